"""Financing application status vocabularies and transition rules.

Two vocabularies exist and must not be mixed:

- FinancingStatus: detailed processing states driven by the orchestrator
    draft -> submitted -> t1_pending -> t1_validated -> t2_pending
          -> t2_validated -> approved -> disbursed
    with blocked reachable from any processing step.
- AdminStatus: simplified review states used for manual status changes
    pending -> approved | rejected, rejected -> pending, approved -> disbursed

The adapter functions at the bottom translate between them.
"""

from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from tawarruq_gateway.domain.exceptions import InvalidTransitionError


class FinancingStatus(str, Enum):
    """Processing status stored on the application"""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    T1_PENDING = "t1_pending"
    T1_VALIDATED = "t1_validated"
    T2_PENDING = "t2_pending"
    T2_VALIDATED = "t2_validated"
    APPROVED = "approved"
    BLOCKED = "blocked"
    DISBURSED = "disbursed"


class AdminStatus(str, Enum):
    """Status vocabulary of the administrative review path"""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DISBURSED = "disbursed"


# Orchestrator state machine
PROCESSING_TRANSITIONS: Dict[FinancingStatus, FrozenSet[FinancingStatus]] = {
    FinancingStatus.DRAFT: frozenset({FinancingStatus.SUBMITTED}),
    FinancingStatus.SUBMITTED: frozenset({FinancingStatus.T1_PENDING}),
    FinancingStatus.T1_PENDING: frozenset({FinancingStatus.T1_VALIDATED, FinancingStatus.BLOCKED}),
    FinancingStatus.T1_VALIDATED: frozenset({FinancingStatus.T2_PENDING}),
    FinancingStatus.T2_PENDING: frozenset(
        {FinancingStatus.T2_PENDING, FinancingStatus.T2_VALIDATED, FinancingStatus.BLOCKED}
    ),
    FinancingStatus.T2_VALIDATED: frozenset({FinancingStatus.APPROVED}),
    FinancingStatus.APPROVED: frozenset({FinancingStatus.DISBURSED}),
    FinancingStatus.BLOCKED: frozenset(),  # reopened only by an admin action
    FinancingStatus.DISBURSED: frozenset(),
}

# Admin review allow-list
ADMIN_TRANSITIONS: Dict[AdminStatus, FrozenSet[AdminStatus]] = {
    AdminStatus.PENDING: frozenset({AdminStatus.APPROVED, AdminStatus.REJECTED}),
    AdminStatus.REJECTED: frozenset({AdminStatus.PENDING}),
    AdminStatus.APPROVED: frozenset({AdminStatus.DISBURSED}),
    AdminStatus.DISBURSED: frozenset(),
}

# A venue leg may already be executed but not yet recorded
_TRADE_IN_FLIGHT = frozenset({FinancingStatus.T1_PENDING, FinancingStatus.T2_PENDING})

_IN_PROCESSING = frozenset(
    {
        FinancingStatus.SUBMITTED,
        FinancingStatus.T1_PENDING,
        FinancingStatus.T1_VALIDATED,
        FinancingStatus.T2_PENDING,
        FinancingStatus.T2_VALIDATED,
    }
)


def can_transition(current: FinancingStatus, new: FinancingStatus) -> bool:
    """Check a processing transition without raising"""
    return new in PROCESSING_TRANSITIONS.get(current, frozenset())


def is_transition_allowed(current: AdminStatus, new: AdminStatus) -> bool:
    """
    Check a manual status change against the admin allow-list.

    Consulted before any administrative mutation.
    """
    return new in ADMIN_TRANSITIONS.get(current, frozenset())


def get_allowed_admin_transitions(status: AdminStatus) -> List[AdminStatus]:
    return sorted(ADMIN_TRANSITIONS.get(status, frozenset()), key=lambda s: s.value)


def to_admin_status(status: FinancingStatus) -> Optional[AdminStatus]:
    """Project a processing status onto the admin vocabulary (None for drafts)"""
    if status in _IN_PROCESSING:
        return AdminStatus.PENDING
    return {
        FinancingStatus.APPROVED: AdminStatus.APPROVED,
        FinancingStatus.BLOCKED: AdminStatus.REJECTED,
        FinancingStatus.DISBURSED: AdminStatus.DISBURSED,
    }.get(status)


def reopen_status(has_t1: bool, has_t2: bool) -> FinancingStatus:
    """
    Where a reopened application resumes.

    Recorded legs are never re-executed: a lot the bank already owns is
    taken on to T2 rather than bought a second time.
    """
    if has_t1 and has_t2:
        return FinancingStatus.T2_VALIDATED
    if has_t1:
        return FinancingStatus.T1_VALIDATED
    return FinancingStatus.SUBMITTED


def resolve_admin_transition(
    current: FinancingStatus,
    target: AdminStatus,
    has_t1: bool = False,
    has_t2: bool = False,
) -> FinancingStatus:
    """
    Translate an admin status change into the processing status to store.

    `has_t1`/`has_t2` say which trade legs are already recorded; they only
    matter when reopening.

    Raises:
        InvalidTransitionError: if the admin allow-list refuses the change, the
            application is mid-processing and cannot yet be approved, or a
            trade leg is in flight and cannot be rejected
    """
    admin_current = to_admin_status(current)
    if admin_current is None:
        raise InvalidTransitionError(f"Status {current.value} is not under admin review")

    if not is_transition_allowed(admin_current, target):
        allowed = [s.value for s in get_allowed_admin_transitions(admin_current)]
        raise InvalidTransitionError(
            f"Invalid transition: {admin_current.value} -> {target.value}. "
            f"Allowed transitions from {admin_current.value}: {allowed}"
        )

    if target is AdminStatus.APPROVED:
        # pending covers every processing step; only a cleared T2 may be approved
        if current is not FinancingStatus.T2_VALIDATED:
            raise InvalidTransitionError(
                f"Cannot approve while processing is at {current.value}; T2 must be validated first"
            )
        return FinancingStatus.APPROVED
    if target is AdminStatus.REJECTED:
        if current in _TRADE_IN_FLIGHT:
            raise InvalidTransitionError(
                f"Cannot reject while a trade is in flight at {current.value}; retry once the step settles"
            )
        return FinancingStatus.BLOCKED
    if target is AdminStatus.DISBURSED:
        return FinancingStatus.DISBURSED
    return reopen_status(has_t1, has_t2)
