"""Tawarruq process orchestrator - drives an application from submission to approval.

Flow:
    submitted -> t1_pending -> t1_validated -> t2_pending -> t2_validated -> approved

Every step returns a ProcessingResult instead of raising. Precondition
failures leave the application untouched; anything that goes wrong once a
trade is under way routes the application to `blocked`.
"""

import asyncio
import logging
import uuid
import weakref
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Awaitable, Iterator, Optional, Sequence, TypeVar, Union

from sqlalchemy.orm import Session, sessionmaker

from tawarruq_gateway.config import Settings
from tawarruq_gateway.domain.exceptions import InvalidTransitionError, VenueTimeoutError
from tawarruq_gateway.domain.models import ComplianceVerdict, ProcessingResult
from tawarruq_gateway.domain.status import FinancingStatus, can_transition
from tawarruq_gateway.domain.validation import (
    CRITICAL_RULES,
    all_passed,
    run_full_validation,
    validate_t1_only,
)
from tawarruq_gateway.infrastructure.clients.venue import VenueClient
from tawarruq_gateway.infrastructure.database.repositories import (
    T1_PURCHASE,
    T2_SALE,
    ApplicationRepository,
    TransactionRepository,
    ValidationRepository,
    purchase_from_record,
)
from tawarruq_gateway.infrastructure.observability.logging import log_step
from tawarruq_gateway.infrastructure.observability.metrics import (
    record_blocked,
    record_step,
    record_verdict,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

T1_VALIDATION = "T1_VALIDATION"
FULL_SHARIAH_COMPLIANCE = "FULL_SHARIAH_COMPLIANCE"
DEFAULT_CUSTOMER_NAME = "Customer"
UNKNOWN_STATUS = "unknown"

# One lock per application id while a step for it is in flight
_application_locks: "weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock]" = weakref.WeakValueDictionary()


class _Precondition(Exception):
    """Internal signal: step cannot start, status is left as it is"""

    def __init__(self, message: str, current_status: str):
        super().__init__(message)
        self.message = message
        self.current_status = current_status


class TawarruqOrchestrator:
    """Runs T1, T2 and approval for a financing application"""

    def __init__(
        self,
        session_factory: sessionmaker,
        venue_client: VenueClient,
        config: Settings,
    ):
        self.session_factory = session_factory
        self.venue_client = venue_client
        self.bank_identity = config.bank_identity
        self.venue_timeout_seconds = config.venue_timeout_seconds
        self.settlement_delay_seconds = config.settlement_delay_seconds
        self.price_variance_threshold = config.pricing_variance_threshold_percent
        self.validator_version = config.validator_version

    # ------------------------------------------------------------------
    # Public steps
    # ------------------------------------------------------------------

    async def process_t1(self, application_id: Union[uuid.UUID, str]) -> ProcessingResult:
        """
        T1: bank purchases a commodity lot worth the principal.

        Status: submitted -> t1_pending -> t1_validated (or blocked)
        """
        app_id = _coerce_id(application_id)
        if app_id is None:
            return self._not_found("t1", application_id)
        async with _lock_for(app_id):
            return await self._run_step("t1", app_id, self._process_t1)

    async def process_t2(self, application_id: Union[uuid.UUID, str]) -> ProcessingResult:
        """
        T2: customer sells the lot to a third party, then the full Shariah check runs.

        Status: t1_validated | t2_pending -> t2_pending -> t2_validated (or blocked)
        """
        app_id = _coerce_id(application_id)
        if app_id is None:
            return self._not_found("t2", application_id)
        async with _lock_for(app_id):
            return await self._run_step("t2", app_id, self._process_t2)

    async def approve_application(self, application_id: Union[uuid.UUID, str]) -> ProcessingResult:
        """Status: t2_validated -> approved. No further validation happens here."""
        app_id = _coerce_id(application_id)
        if app_id is None:
            return self._not_found("approve", application_id)
        async with _lock_for(app_id):
            return await self._run_step("approve", app_id, self._approve)

    async def process_full_flow(self, application_id: Union[uuid.UUID, str]) -> ProcessingResult:
        """Run T1, T2 and approval in order, stopping at the first failure"""
        t1_result = await self.process_t1(application_id)
        if not t1_result.success:
            return t1_result

        # Settlement latency between the two legs
        if self.settlement_delay_seconds > 0:
            await asyncio.sleep(self.settlement_delay_seconds)

        t2_result = await self.process_t2(application_id)
        if not t2_result.success:
            return t2_result

        return await self.approve_application(application_id)

    # ------------------------------------------------------------------
    # Step bodies
    # ------------------------------------------------------------------

    async def _process_t1(self, app_id: uuid.UUID) -> ProcessingResult:
        with self._transaction() as db:
            applications = ApplicationRepository(db)
            application = self._load(applications, app_id)
            if application.status != FinancingStatus.SUBMITTED.value:
                raise _Precondition(
                    f"Cannot process T1: Application status is {application.status}",
                    application.status,
                )
            principal = Decimal(application.principal_amount)
            self._advance(applications, app_id, [FinancingStatus.SUBMITTED], FinancingStatus.T1_PENDING)

        try:
            purchase = await self._call_venue(self.venue_client.purchase(principal, self.bank_identity))

            checks = validate_t1_only(purchase, expected_amount=principal)
            check_payload = [c.to_dict() for c in checks]

            if not all_passed(checks):
                with self._transaction() as db:
                    ValidationRepository(db).create_record(
                        financing_id=app_id,
                        validation_type=T1_VALIDATION,
                        result="fail",
                        details={"purchase": purchase.to_dict(), "validations": check_payload},
                        validator_version=self.validator_version,
                    )
                    ApplicationRepository(db).compare_and_set_status(
                        app_id,
                        [FinancingStatus.T1_PENDING],
                        FinancingStatus.BLOCKED,
                        blocked_reason="T1 validation failed",
                    )
                record_blocked("t1", "compliance")
                log_step(
                    str(app_id),
                    "t1",
                    "blocked",
                    FinancingStatus.BLOCKED.value,
                    "T1 validation failed",
                    error_kind="compliance",
                    failed_rules=[c.rule for c in checks if not c.passed],
                )
                return ProcessingResult(
                    success=False,
                    new_status=FinancingStatus.BLOCKED.value,
                    message="T1 validation failed",
                    details={"validations": check_payload},
                )

            # Trade record, audit record and status move commit together
            with self._transaction() as db:
                TransactionRepository(db).create_transaction(app_id, purchase)
                ValidationRepository(db).create_record(
                    financing_id=app_id,
                    validation_type=T1_VALIDATION,
                    result="pass",
                    details={"purchase": purchase.to_dict(), "validations": check_payload},
                    validator_version=self.validator_version,
                )
                self._advance(
                    ApplicationRepository(db),
                    app_id,
                    [FinancingStatus.T1_PENDING],
                    FinancingStatus.T1_VALIDATED,
                )

        except Exception as e:
            return self._fail_processing("t1", app_id, FinancingStatus.T1_PENDING, e)

        record_step("t1", "success")
        log_step(
            str(app_id),
            "t1",
            "success",
            FinancingStatus.T1_VALIDATED.value,
            "T1 transaction completed and validated",
            commodity_id=purchase.commodity_id,
            venue_reference=purchase.venue_reference,
        )
        return ProcessingResult(
            success=True,
            new_status=FinancingStatus.T1_VALIDATED.value,
            message="T1 transaction completed and validated",
            details={
                "commodity_id": purchase.commodity_id,
                "commodity": purchase.commodity_type.value,
                "quantity": str(purchase.quantity),
                "unit_price": str(purchase.unit_price),
                "amount": str(purchase.total_amount),
                "reference": purchase.venue_reference,
                "certificate": purchase.certificate_number,
            },
        )

    async def _process_t2(self, app_id: uuid.UUID) -> ProcessingResult:
        allowed = [FinancingStatus.T1_VALIDATED, FinancingStatus.T2_PENDING]

        with self._transaction() as db:
            applications = ApplicationRepository(db)
            transactions = TransactionRepository(db)
            application = self._load(applications, app_id)

            if application.status not in {s.value for s in allowed}:
                raise _Precondition(
                    f"Cannot process T2: Application status is {application.status}",
                    application.status,
                )

            t1_record = transactions.get_leg(app_id, T1_PURCHASE)
            if t1_record is None:
                raise _Precondition("T1 transaction not found", application.status)
            if transactions.get_leg(app_id, T2_SALE) is not None:
                raise _Precondition("T2 transaction already recorded", application.status)

            purchase = purchase_from_record(t1_record)
            customer_name = application.applicant_name or DEFAULT_CUSTOMER_NAME
            self._advance(applications, app_id, allowed, FinancingStatus.T2_PENDING)

        try:
            sale = await self._call_venue(self.venue_client.sell(purchase, customer_name))

            report = run_full_validation(
                purchase,
                sale,
                bank_name=self.bank_identity,
                customer_name=customer_name,
                threshold_percent=self.price_variance_threshold,
                validator_version=self.validator_version,
            )
            record_verdict(report.overall_result.value)
            report_payload = report.to_dict()

            if report.overall_result is ComplianceVerdict.NON_COMPLIANT:
                failed_critical = [r for r in report.failed_rules if r in CRITICAL_RULES]
                reason = f"Shariah Non-Compliance: {', '.join(failed_critical)}"
                with self._transaction() as db:
                    ValidationRepository(db).create_record(
                        financing_id=app_id,
                        validation_type=FULL_SHARIAH_COMPLIANCE,
                        result="fail",
                        details=report_payload,
                        validator_version=report.validator_version,
                        validated_at=report.validated_at,
                    )
                    ApplicationRepository(db).compare_and_set_status(
                        app_id,
                        [FinancingStatus.T2_PENDING],
                        FinancingStatus.BLOCKED,
                        blocked_reason=reason,
                    )
                record_blocked("t2", "compliance")
                log_step(
                    str(app_id),
                    "t2",
                    "blocked",
                    FinancingStatus.BLOCKED.value,
                    reason,
                    error_kind="compliance",
                    failed_rules=report.failed_rules,
                )
                return ProcessingResult(
                    success=False,
                    new_status=FinancingStatus.BLOCKED.value,
                    message="SHARIAH NON-COMPLIANCE DETECTED",
                    details=report_payload,
                )

            with self._transaction() as db:
                TransactionRepository(db).create_transaction(app_id, sale)
                ValidationRepository(db).create_record(
                    financing_id=app_id,
                    validation_type=FULL_SHARIAH_COMPLIANCE,
                    result="pass" if report.overall_result is ComplianceVerdict.COMPLIANT else "warning",
                    details=report_payload,
                    validator_version=report.validator_version,
                    validated_at=report.validated_at,
                )
                self._advance(
                    ApplicationRepository(db),
                    app_id,
                    [FinancingStatus.T2_PENDING],
                    FinancingStatus.T2_VALIDATED,
                )

        except Exception as e:
            return self._fail_processing("t2", app_id, FinancingStatus.T2_PENDING, e)

        record_step("t2", "success")
        log_step(
            str(app_id),
            "t2",
            "success",
            FinancingStatus.T2_VALIDATED.value,
            "T2 transaction completed",
            verdict=report.overall_result.value,
            venue_reference=sale.venue_reference,
        )
        message = (
            "T2 transaction completed - Shariah Compliant"
            if report.overall_result is ComplianceVerdict.COMPLIANT
            else "T2 transaction completed with compliance warnings"
        )
        return ProcessingResult(
            success=True,
            new_status=FinancingStatus.T2_VALIDATED.value,
            message=message,
            details={
                "validation_result": report.overall_result.value,
                "warnings": report.failed_rules,
                "sale_amount": str(sale.total_amount),
                "reference": sale.venue_reference,
            },
        )

    async def _approve(self, app_id: uuid.UUID) -> ProcessingResult:
        with self._transaction() as db:
            applications = ApplicationRepository(db)
            application = self._load(applications, app_id)
            if application.status != FinancingStatus.T2_VALIDATED.value:
                raise _Precondition(
                    f"Cannot approve: Application status is {application.status}",
                    application.status,
                )
            self._advance(
                applications, app_id, [FinancingStatus.T2_VALIDATED], FinancingStatus.APPROVED
            )

        record_step("approve", "success")
        log_step(
            str(app_id),
            "approve",
            "success",
            FinancingStatus.APPROVED.value,
            "Application approved",
        )
        return ProcessingResult(
            success=True,
            new_status=FinancingStatus.APPROVED.value,
            message="Application approved - Ready for disbursement",
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _run_step(self, step: str, app_id: uuid.UUID, body) -> ProcessingResult:
        """Convert precondition signals and pre-trade errors into failure results"""
        try:
            return await body(app_id)
        except _Precondition as p:
            record_step(step, "precondition")
            log_step(str(app_id), step, "precondition", p.current_status, p.message)
            return ProcessingResult(success=False, new_status=p.current_status, message=p.message)
        except Exception as e:
            # Nothing was traded yet, so the stored status is still authoritative
            logger.exception("Step %s could not start", step, extra={"application_id": str(app_id)})
            record_step(step, "error")
            return ProcessingResult(
                success=False,
                new_status=self._current_status(app_id),
                message=f"{_step_label(step)} could not be started",
                details={"error_kind": type(e).__name__},
            )

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except BaseException:
            db.rollback()
            raise
        finally:
            db.close()

    def _load(self, applications: ApplicationRepository, app_id: uuid.UUID):
        application = applications.get_application(app_id)
        if application is None:
            raise _Precondition("Application not found", UNKNOWN_STATUS)
        return application

    def _advance(
        self,
        applications: ApplicationRepository,
        app_id: uuid.UUID,
        expected: Sequence[FinancingStatus],
        new_status: FinancingStatus,
    ) -> None:
        """Compare-and-set status; a lost race means another caller owns this step"""
        if not any(can_transition(s, new_status) for s in expected):
            raise InvalidTransitionError(
                f"No transition to {new_status.value} from {[s.value for s in expected]}"
            )
        if not applications.compare_and_set_status(app_id, expected, new_status):
            current = applications.get_application(app_id)
            current_status = current.status if current else UNKNOWN_STATUS
            if new_status in (FinancingStatus.T1_PENDING, FinancingStatus.T2_PENDING):
                raise _Precondition(
                    f"Application status changed concurrently (now {current_status})",
                    current_status,
                )
            raise InvalidTransitionError(
                f"Application left {[s.value for s in expected]} before reaching {new_status.value}"
            )

    async def _call_venue(self, call: Awaitable[T]) -> T:
        """Bound every venue call; a timeout is a processing error like any other"""
        try:
            return await asyncio.wait_for(call, timeout=self.venue_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise VenueTimeoutError(
                f"Venue call exceeded {self.venue_timeout_seconds}s"
            ) from e

    def _fail_processing(
        self,
        step: str,
        app_id: uuid.UUID,
        pending_status: FinancingStatus,
        error: Exception,
    ) -> ProcessingResult:
        """Route a mid-trade failure to blocked (fail-safe: never retry silently)"""
        reason = f"{_step_label(step)} processing error"
        logger.error(
            "%s: %s",
            reason,
            error,
            exc_info=error,
            extra={"application_id": str(app_id), "step": step},
        )

        new_status = self._block(app_id, pending_status, reason)
        record_blocked(step, "processing")
        log_step(
            str(app_id),
            step,
            "blocked",
            new_status,
            reason,
            error_kind=type(error).__name__,
        )
        return ProcessingResult(
            success=False,
            new_status=new_status,
            message=f"{_step_label(step)} processing failed",
            details={"error_kind": type(error).__name__},
        )

    def _block(self, app_id: uuid.UUID, pending_status: FinancingStatus, reason: str) -> str:
        """Move pending -> blocked and return the status the application ends up in"""
        try:
            with self._transaction() as db:
                applications = ApplicationRepository(db)
                if applications.compare_and_set_status(
                    app_id, [pending_status], FinancingStatus.BLOCKED, blocked_reason=reason
                ):
                    return FinancingStatus.BLOCKED.value
                # Another caller already finished this step
                current = applications.get_application(app_id)
                return current.status if current else UNKNOWN_STATUS
        except Exception:
            logger.exception("Could not record blocked status", extra={"application_id": str(app_id)})
            return UNKNOWN_STATUS

    def _current_status(self, app_id: uuid.UUID) -> str:
        try:
            with self._transaction() as db:
                application = ApplicationRepository(db).get_application(app_id)
                return application.status if application else UNKNOWN_STATUS
        except Exception:
            logger.exception("Could not read application status", extra={"application_id": str(app_id)})
            return UNKNOWN_STATUS

    def _not_found(self, step: str, application_id: Any) -> ProcessingResult:
        record_step(step, "precondition")
        log_step(str(application_id), step, "precondition", UNKNOWN_STATUS, "Application not found")
        return ProcessingResult(success=False, new_status=UNKNOWN_STATUS, message="Application not found")


def _coerce_id(application_id: Union[uuid.UUID, str]) -> Optional[uuid.UUID]:
    if isinstance(application_id, uuid.UUID):
        return application_id
    try:
        return uuid.UUID(str(application_id))
    except ValueError:
        return None


def _lock_for(app_id: uuid.UUID) -> asyncio.Lock:
    lock = _application_locks.get(app_id)
    if lock is None:
        lock = asyncio.Lock()
        _application_locks[app_id] = lock
    return lock


def _step_label(step: str) -> str:
    return {"t1": "T1", "t2": "T2", "approve": "Approval"}[step]
