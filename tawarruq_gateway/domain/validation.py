"""Shariah compliance validation engine - core business logic for Tawarruq certification"""

from decimal import Decimal
from typing import List, Optional

from tawarruq_gateway.domain.models import (
    CommodityPurchase,
    CommoditySale,
    ComplianceVerdict,
    ValidationReport,
    ValidationResult,
    ValidationSummary,
)
from tawarruq_gateway.utils.clock import ensure_utc, utcnow

VALIDATOR_VERSION = "1.0.0"
CERTIFICATE_PREFIX = "CERT-"
DEFAULT_PRICE_VARIANCE_THRESHOLD = Decimal("5")

TARTIB_SEQUENCE = "TARTIB_SEQUENCE"
COMMODITY_IDENTITY = "COMMODITY_IDENTITY"
QABD_OWNERSHIP = "QABD_OWNERSHIP"
QUANTITY_CONSISTENCY = "QUANTITY_CONSISTENCY"
PRICING_VALIDITY = "PRICING_VALIDITY"
CERTIFICATE_VALIDITY = "CERTIFICATE_VALIDITY"

# A failure in any of these is a Shariah prohibition, not a documentation issue
CRITICAL_RULES = frozenset({TARTIB_SEQUENCE, COMMODITY_IDENTITY, QABD_OWNERSHIP})


def validate_sequence(t1: CommodityPurchase, t2: CommoditySale) -> ValidationResult:
    """
    Rule 1: Tartib. The purchase must complete strictly before the sale.

    This is the most important Shariah requirement; a tie counts as a failure.
    """
    t1_time = ensure_utc(t1.timestamp)
    t2_time = ensure_utc(t2.timestamp)
    passed = t1_time < t2_time
    diff_ms = int((t2_time - t1_time).total_seconds() * 1000)

    return ValidationResult(
        rule=TARTIB_SEQUENCE,
        passed=passed,
        message=(
            f"T1 occurred {round(diff_ms / 1000)}s before T2 - Sequence valid"
            if passed
            else "CRITICAL: T2 did not occur after T1 - Shariah Non-Compliance detected"
        ),
        details={
            "t1_timestamp": t1_time.isoformat(),
            "t2_timestamp": t2_time.isoformat(),
            "time_difference_ms": diff_ms,
        },
    )


def validate_commodity_identity(t1: CommodityPurchase, t2: CommoditySale) -> ValidationResult:
    """Rule 2: the same lot must flow through both legs"""
    passed = t1.commodity_id == t2.commodity_id

    return ValidationResult(
        rule=COMMODITY_IDENTITY,
        passed=passed,
        message=(
            "Same commodity used in T1 and T2 - Valid"
            if passed
            else "CRITICAL: Different commodities in T1 and T2"
        ),
        details={"t1_commodity": t1.commodity_id, "t2_commodity": t2.commodity_id},
    )


def validate_ownership(
    t1: CommodityPurchase,
    t2: CommoditySale,
    bank_name: str,
    customer_name: str,
) -> ValidationResult:
    """
    Rule 3: Qabd. The bank takes ownership in T1; the customer, having
    received it from the bank, is the seller in T2.
    """
    bank_owned = t1.buyer == bank_name
    customer_sold = t2.seller == customer_name
    passed = bank_owned and customer_sold

    return ValidationResult(
        rule=QABD_OWNERSHIP,
        passed=passed,
        message=(
            "Ownership chain valid: Platform -> Bank -> Customer -> Third Party"
            if passed
            else "CRITICAL: Ownership chain broken"
        ),
        details={
            "t1_buyer": t1.buyer,
            "t2_seller": t2.seller,
            "expected_bank": bank_name,
            "expected_customer": customer_name,
        },
    )


def validate_quantity(t1: CommodityPurchase, t2: CommoditySale) -> ValidationResult:
    """Rule 4: exact quantity equality across both legs"""
    passed = t1.quantity == t2.quantity

    return ValidationResult(
        rule=QUANTITY_CONSISTENCY,
        passed=passed,
        message=(
            f"Quantity consistent: {t1.quantity} MT"
            if passed
            else f"WARNING: Quantity mismatch - T1: {t1.quantity} MT, T2: {t2.quantity} MT"
        ),
        details={"t1_quantity": str(t1.quantity), "t2_quantity": str(t2.quantity)},
    )


def calculate_price_variance(t1_unit_price: Decimal, t2_unit_price: Decimal) -> Decimal:
    """Percentage drop from T1 to T2 unit price (negative when T2 is dearer)"""
    if t1_unit_price == 0:
        raise ValueError("T1 unit price must be non-zero")
    return (t1_unit_price - t2_unit_price) / t1_unit_price * Decimal("100")


def validate_pricing(
    t1: CommodityPurchase,
    t2: CommoditySale,
    threshold_percent: Decimal = DEFAULT_PRICE_VARIANCE_THRESHOLD,
) -> ValidationResult:
    """
    Rule 5: T2 may sit at or below T1, within the variance threshold.

    A T2 priced above T1, or a spread at or beyond the threshold, fails.
    """
    if t1.unit_price <= 0:
        return ValidationResult(
            rule=PRICING_VALIDITY,
            passed=False,
            message="WARNING: T1 unit price is not positive",
            details={"t1_unit_price": str(t1.unit_price), "t2_unit_price": str(t2.unit_price)},
        )

    variance = calculate_price_variance(t1.unit_price, t2.unit_price)
    passed = Decimal("0") <= variance < threshold_percent

    return ValidationResult(
        rule=PRICING_VALIDITY,
        passed=passed,
        message=(
            f"Pricing within acceptable range ({variance:.2f}% variance)"
            if passed
            else f"WARNING: Price variance outside accepted band ({variance:.2f}%)"
        ),
        details={
            "t1_unit_price": str(t1.unit_price),
            "t2_unit_price": str(t2.unit_price),
            "variance_percent": float(round(variance, 4)),
            "threshold_percent": float(threshold_percent),
        },
    )


def has_valid_certificate(certificate_number: Optional[str]) -> bool:
    return bool(certificate_number) and certificate_number.startswith(CERTIFICATE_PREFIX)


def validate_certificates(t1: CommodityPurchase, t2: CommoditySale) -> ValidationResult:
    """Rule 6: both legs carry a venue certificate"""
    passed = has_valid_certificate(t1.certificate_number) and has_valid_certificate(
        t2.certificate_number
    )

    return ValidationResult(
        rule=CERTIFICATE_VALIDITY,
        passed=passed,
        message=(
            "Both transactions have valid BSAS certificates"
            if passed
            else "WARNING: Missing or invalid certificates"
        ),
        details={
            "t1_certificate": t1.certificate_number,
            "t2_certificate": t2.certificate_number,
        },
    )


def determine_verdict(results: List[ValidationResult]) -> ComplianceVerdict:
    """
    Aggregate rule outcomes.

    - Any critical failure (sequence, identity, ownership): NON_COMPLIANT
    - Only non-critical failures: WARNING
    - Nothing failed: COMPLIANT
    """
    failed = [r for r in results if not r.passed]
    if any(r.rule in CRITICAL_RULES for r in failed):
        return ComplianceVerdict.NON_COMPLIANT
    if failed:
        return ComplianceVerdict.WARNING
    return ComplianceVerdict.COMPLIANT


def run_full_validation(
    t1: CommodityPurchase,
    t2: CommoditySale,
    bank_name: str,
    customer_name: str,
    threshold_percent: Decimal = DEFAULT_PRICE_VARIANCE_THRESHOLD,
    validator_version: str = VALIDATOR_VERSION,
) -> ValidationReport:
    """
    Main entry point: evaluate all six rules in order and build the report.
    """
    results = [
        validate_sequence(t1, t2),
        validate_commodity_identity(t1, t2),
        validate_ownership(t1, t2, bank_name, customer_name),
        validate_quantity(t1, t2),
        validate_pricing(t1, t2, threshold_percent),
        validate_certificates(t1, t2),
    ]

    passed = sum(1 for r in results if r.passed)
    warnings = sum(1 for r in results if not r.passed and r.rule not in CRITICAL_RULES)

    return ValidationReport(
        overall_result=determine_verdict(results),
        validated_at=utcnow(),
        validator_version=validator_version,
        results=tuple(results),
        summary=ValidationSummary(
            passed=passed,
            failed=len(results) - passed,
            warnings=warnings,
        ),
    )


def validate_t1_only(
    t1: CommodityPurchase,
    expected_amount: Optional[Decimal] = None,
) -> List[ValidationResult]:
    """
    Reduced pre-check run right after the purchase, before any T2 exists.

    When `expected_amount` is given the T1 total must also equal the
    financing principal.
    """
    results = [
        ValidationResult(
            rule="T1_CERTIFICATE",
            passed=bool(t1.certificate_number),
            message="T1 certificate issued" if t1.certificate_number else "T1 certificate missing",
            details={"certificate": t1.certificate_number},
        ),
        ValidationResult(
            rule="T1_VENUE_REFERENCE",
            passed=bool(t1.venue_reference),
            message=(
                "T1 has valid venue reference"
                if t1.venue_reference
                else "T1 venue reference missing"
            ),
            details={"reference": t1.venue_reference},
        ),
        ValidationResult(
            rule="T1_AMOUNT",
            passed=t1.total_amount > 0,
            message=(
                f"T1 amount valid: MYR {t1.total_amount:,.2f}"
                if t1.total_amount > 0
                else "T1 amount invalid"
            ),
            details={"amount": str(t1.total_amount)},
        ),
    ]

    if expected_amount is not None:
        matches = t1.total_amount == expected_amount
        results.append(
            ValidationResult(
                rule="T1_PRINCIPAL_MATCH",
                passed=matches,
                message=(
                    "T1 total equals financing principal"
                    if matches
                    else f"T1 total {t1.total_amount} differs from principal {expected_amount}"
                ),
                details={"amount": str(t1.total_amount), "principal": str(expected_amount)},
            )
        )

    return results


def all_passed(results: List[ValidationResult]) -> bool:
    return all(r.passed for r in results)
