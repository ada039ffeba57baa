"""Integration tests for the Tawarruq orchestrator against SQLite and the simulated venue"""

import asyncio
import dataclasses
import random
from datetime import timedelta
from decimal import Decimal

import pytest

from tawarruq_gateway.domain.exceptions import InvalidTransitionError, VenueRejectionError
from tawarruq_gateway.domain.status import AdminStatus, FinancingStatus, resolve_admin_transition
from tawarruq_gateway.infrastructure.clients.venue import SimulatedVenueClient
from tawarruq_gateway.infrastructure.database.repositories import (
    T1_PURCHASE,
    T2_SALE,
    ApplicationRepository,
    TransactionRepository,
    ValidationRepository,
)
from tawarruq_gateway.services.orchestrator import TawarruqOrchestrator

CUSTOMER = "Aisyah binti Ahmad"


async def test_t1_purchases_lot_worth_principal(orchestrator, make_application, reload, db):
    application = make_application(principal="50000")

    result = await orchestrator.process_t1(application.id)

    assert result.success is True
    assert result.new_status == "t1_validated"
    assert result.details["amount"] == "50000.00"
    assert result.details["certificate"].startswith("CERT-")

    application = reload(application)
    assert application.status == "t1_validated"

    t1 = TransactionRepository(db).get_leg(application.id, T1_PURCHASE)
    assert t1.sequence_number == 1
    assert t1.buyer == "Agrobank"
    assert t1.total_amount == Decimal("50000.00")
    assert t1.commodity_id == result.details["commodity_id"]

    records = ValidationRepository(db).get_records(application.id)
    assert [(r.validation_type, r.result) for r in records] == [("T1_VALIDATION", "pass")]


async def test_happy_path_reaches_approval(orchestrator, make_application, reload, db):
    """Scenario A: T1, T2 and approval succeed in order"""
    application = make_application(principal="50000")

    t1 = await orchestrator.process_t1(application.id)
    t2 = await orchestrator.process_t2(application.id)
    approval = await orchestrator.approve_application(application.id)

    assert t1.new_status == "t1_validated"
    assert t2.success is True
    assert t2.new_status == "t2_validated"
    assert t2.details["validation_result"] == "COMPLIANT"
    assert t2.details["warnings"] == []
    assert approval.success is True
    assert approval.new_status == "approved"
    assert approval.message == "Application approved - Ready for disbursement"
    assert reload(application).status == "approved"

    legs = TransactionRepository(db).get_transactions(application.id)
    assert [leg.transaction_type for leg in legs] == [T1_PURCHASE, T2_SALE]
    assert legs[0].commodity_id == legs[1].commodity_id
    assert legs[1].seller == CUSTOMER

    records = ValidationRepository(db).get_records(application.id)
    assert [(r.validation_type, r.result) for r in records] == [
        ("T1_VALIDATION", "pass"),
        ("FULL_SHARIAH_COMPLIANCE", "pass"),
    ]
    assert records[1].details["summary"] == {"passed": 6, "failed": 0, "warnings": 0}


async def test_t1_requires_submitted_status(orchestrator, make_application, reload, venue):
    application = make_application(status=FinancingStatus.DRAFT)

    result = await orchestrator.process_t1(application.id)

    assert result.success is False
    assert result.new_status == "draft"
    assert result.message == "Cannot process T1: Application status is draft"
    assert reload(application).status == "draft"
    assert venue.purchase_calls == 0


async def test_t1_twice_does_not_buy_twice(orchestrator, make_application, db, venue):
    application = make_application()

    await orchestrator.process_t1(application.id)
    second = await orchestrator.process_t1(application.id)

    assert second.success is False
    assert second.new_status == "t1_validated"
    assert venue.purchase_calls == 1
    assert len(TransactionRepository(db).get_transactions(application.id)) == 1


async def test_t1_precheck_failure_blocks(orchestrator, make_application, reload, db, venue):
    venue.purchase_tamper = lambda p: dataclasses.replace(p, certificate_number="")
    application = make_application()

    result = await orchestrator.process_t1(application.id)

    assert result.success is False
    assert result.new_status == "blocked"
    assert result.message == "T1 validation failed"
    failed = [v["rule"] for v in result.details["validations"] if not v["passed"]]
    assert failed == ["T1_CERTIFICATE"]

    application = reload(application)
    assert application.status == "blocked"
    assert application.blocked_reason == "T1 validation failed"
    assert TransactionRepository(db).get_leg(application.id, T1_PURCHASE) is None
    records = ValidationRepository(db).get_records(application.id)
    assert [(r.validation_type, r.result) for r in records] == [("T1_VALIDATION", "fail")]


async def test_t1_total_must_match_principal(orchestrator, make_application, reload, venue):
    venue.purchase_tamper = lambda p: dataclasses.replace(p, total_amount=p.total_amount - 1)
    application = make_application(principal="80000")

    result = await orchestrator.process_t1(application.id)

    assert result.new_status == "blocked"
    failed = [v["rule"] for v in result.details["validations"] if not v["passed"]]
    assert failed == ["T1_PRINCIPAL_MATCH"]


async def test_venue_rejection_blocks_with_processing_error(orchestrator, make_application, reload, db, venue):
    venue.purchase_error = VenueRejectionError("insufficient liquidity")
    application = make_application()

    result = await orchestrator.process_t1(application.id)

    assert result.success is False
    assert result.new_status == "blocked"
    assert result.message == "T1 processing failed"
    assert result.details == {"error_kind": "VenueRejectionError"}

    application = reload(application)
    assert application.blocked_reason == "T1 processing error"
    assert TransactionRepository(db).get_transactions(application.id) == []


async def test_slow_venue_times_out_and_blocks(orchestrator, make_application, reload, test_settings):
    settings = test_settings.model_copy(update={"venue_timeout_seconds": 0.05})
    slow = TawarruqOrchestrator(
        session_factory=orchestrator.session_factory,
        venue_client=SimulatedVenueClient(rng=random.Random(5), latency_seconds=1.0),
        config=settings,
    )
    application = make_application()

    result = await slow.process_t1(application.id)

    assert result.new_status == "blocked"
    assert result.details == {"error_kind": "VenueTimeoutError"}
    assert reload(application).blocked_reason == "T1 processing error"


async def test_t2_requires_validated_t1(orchestrator, make_application, venue):
    application = make_application()

    result = await orchestrator.process_t2(application.id)

    assert result.success is False
    assert result.new_status == "submitted"
    assert result.message == "Cannot process T2: Application status is submitted"
    assert venue.sale_calls == 0


async def test_t2_without_t1_record_is_refused(orchestrator, make_application, reload, venue):
    """Status says t1_validated but no T1 row exists"""
    application = make_application(status=FinancingStatus.T1_VALIDATED)

    result = await orchestrator.process_t2(application.id)

    assert result.success is False
    assert result.message == "T1 transaction not found"
    assert result.new_status == "t1_validated"
    assert reload(application).status == "t1_validated"
    assert venue.sale_calls == 0


async def test_duplicate_t2_keeps_single_record(orchestrator, make_application, reload, db, venue):
    """Scenario C: T2 invoked twice on the same application"""
    application = make_application()
    await orchestrator.process_t1(application.id)

    first = await orchestrator.process_t2(application.id)
    second = await orchestrator.process_t2(application.id)

    assert first.success is True
    assert second.success is False
    assert second.new_status == "t2_validated"
    assert venue.sale_calls == 1
    assert reload(application).status == "t2_validated"
    legs = TransactionRepository(db).get_transactions(application.id)
    assert [leg.transaction_type for leg in legs] == [T1_PURCHASE, T2_SALE]


async def test_concurrent_t2_calls_trade_once(orchestrator, make_application, db, venue):
    application = make_application()
    await orchestrator.process_t1(application.id)

    results = await asyncio.gather(
        orchestrator.process_t2(application.id),
        orchestrator.process_t2(application.id),
    )

    assert sorted(r.success for r in results) == [False, True]
    assert venue.sale_calls == 1
    assert TransactionRepository(db).get_leg(application.id, T2_SALE) is not None


async def test_t2_pending_is_resumable(orchestrator, make_application, reload, db):
    """A T2 that never reached the venue can be retried from t2_pending"""
    application = make_application()
    await orchestrator.process_t1(application.id)
    with orchestrator.session_factory() as session:
        ApplicationRepository(session).compare_and_set_status(
            application.id, [FinancingStatus.T1_VALIDATED], FinancingStatus.T2_PENDING
        )
        session.commit()

    result = await orchestrator.process_t2(application.id)

    assert result.success is True
    assert reload(application).status == "t2_validated"


async def test_commodity_substitution_is_non_compliant(orchestrator, make_application, reload, db, venue):
    venue.sale_tamper = lambda s: dataclasses.replace(s, commodity_id="COM-SWAPPED-0000")
    application = make_application()
    await orchestrator.process_t1(application.id)

    result = await orchestrator.process_t2(application.id)

    assert result.success is False
    assert result.new_status == "blocked"
    assert result.message == "SHARIAH NON-COMPLIANCE DETECTED"
    assert result.details["overall_result"] == "NON_COMPLIANT"

    application = reload(application)
    assert application.status == "blocked"
    assert application.blocked_reason == "Shariah Non-Compliance: COMMODITY_IDENTITY"
    # The non-compliant sale is not recorded as a trade leg
    assert TransactionRepository(db).get_leg(application.id, T2_SALE) is None
    records = ValidationRepository(db).get_records(application.id)
    assert records[-1].validation_type == "FULL_SHARIAH_COMPLIANCE"
    assert records[-1].result == "fail"


async def test_sale_stamped_before_purchase_is_blocked(orchestrator, make_application, reload, venue):
    """Scenario B at the orchestrator level"""
    venue.sale_tamper = lambda s: dataclasses.replace(s, timestamp=s.timestamp - timedelta(hours=1))
    application = make_application()
    await orchestrator.process_t1(application.id)

    result = await orchestrator.process_t2(application.id)

    assert result.new_status == "blocked"
    assert "TARTIB_SEQUENCE" in reload(application).blocked_reason


async def test_seller_must_be_the_applicant(orchestrator, make_application, reload, venue):
    application = make_application(applicant_name=None)
    await orchestrator.process_t1(application.id)

    result = await orchestrator.process_t2(application.id)

    # Without a recorded applicant the sale is made as "Customer", which still matches
    assert result.success is True

    other = make_application()
    await orchestrator.process_t1(other.id)
    venue.sale_tamper = lambda s: dataclasses.replace(s, seller="Impostor")
    result = await orchestrator.process_t2(other.id)
    assert result.new_status == "blocked"
    assert reload(other).blocked_reason == "Shariah Non-Compliance: QABD_OWNERSHIP"


async def test_warning_verdict_still_validates(orchestrator, make_application, reload, db, venue):
    venue.sale_tamper = lambda s: dataclasses.replace(s, quantity=s.quantity + Decimal("0.001"))
    application = make_application()
    await orchestrator.process_t1(application.id)

    result = await orchestrator.process_t2(application.id)

    assert result.success is True
    assert result.new_status == "t2_validated"
    assert result.details["validation_result"] == "WARNING"
    assert result.details["warnings"] == ["QUANTITY_CONSISTENCY"]
    records = ValidationRepository(db).get_records(application.id)
    assert records[-1].result == "warning"


async def test_venue_failure_during_t2_blocks(orchestrator, make_application, reload, venue):
    venue.sale_error = VenueRejectionError("market closed")
    application = make_application()
    await orchestrator.process_t1(application.id)

    result = await orchestrator.process_t2(application.id)

    assert result.new_status == "blocked"
    assert result.message == "T2 processing failed"
    assert reload(application).blocked_reason == "T2 processing error"


async def test_approve_requires_t2_validated(orchestrator, make_application, reload):
    application = make_application(status=FinancingStatus.T1_VALIDATED)

    result = await orchestrator.approve_application(application.id)

    assert result.success is False
    assert result.new_status == "t1_validated"
    assert result.message == "Cannot approve: Application status is t1_validated"
    assert reload(application).status == "t1_validated"


async def test_unknown_and_malformed_ids(orchestrator):
    missing = await orchestrator.process_t1("00000000-0000-0000-0000-000000000000")
    malformed = await orchestrator.process_t2("not-a-uuid")

    assert missing.success is False
    assert missing.message == "Application not found"
    assert malformed.success is False
    assert malformed.new_status == "unknown"


async def test_full_flow(orchestrator, make_application, reload):
    application = make_application(principal="120000")

    result = await orchestrator.process_full_flow(str(application.id))

    assert result.success is True
    assert result.new_status == "approved"
    assert reload(application).status == "approved"


async def test_full_flow_stops_at_first_failure(orchestrator, make_application, reload, venue):
    venue.sale_tamper = lambda s: dataclasses.replace(s, commodity_id="COM-OTHER-0000")
    application = make_application()

    result = await orchestrator.process_full_flow(application.id)

    assert result.success is False
    assert result.message == "SHARIAH NON-COMPLIANCE DETECTED"
    assert reload(application).status == "blocked"


async def test_t1_on_approved_application_is_refused(orchestrator, make_application, reload, db, venue):
    application = make_application(status=FinancingStatus.APPROVED)

    result = await orchestrator.process_t1(application.id)

    assert result.success is False
    assert result.new_status == "approved"
    assert venue.purchase_calls == 0
    assert TransactionRepository(db).get_transactions(application.id) == []
    assert reload(application).status == "approved"


async def test_admin_reject_during_purchase_keeps_the_bought_lot(orchestrator, make_application, reload, db, venue):
    """A rejection attempted while the venue fills T1 is refused and the lot is recorded once"""
    application = make_application()
    refusals = []

    def reject_while_filling(purchase):
        with orchestrator.session_factory() as session:
            current = ApplicationRepository(session).get_application(application.id)
            try:
                resolve_admin_transition(FinancingStatus(current.status), AdminStatus.REJECTED)
            except InvalidTransitionError as e:
                refusals.append(str(e))
        return purchase

    venue.purchase_tamper = reject_while_filling

    result = await orchestrator.process_t1(application.id)

    assert len(refusals) == 1
    assert "t1_pending" in refusals[0]
    assert result.success is True
    assert reload(application).status == "t1_validated"
    assert len(TransactionRepository(db).get_transactions(application.id)) == 1
    assert venue.purchase_calls == 1
