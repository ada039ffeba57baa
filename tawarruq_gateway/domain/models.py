"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class CommodityType(str, Enum):
    """Commodities tradable on the venue"""

    CPO = "CPO"
    PLASTIC_RESIN = "PLASTIC_RESIN"
    RBD_PALM_OLEIN = "RBD_PALM_OLEIN"


class ComplianceVerdict(str, Enum):
    """Aggregate outcome of the full Shariah check"""

    COMPLIANT = "COMPLIANT"
    NON_COMPLIANT = "NON_COMPLIANT"
    WARNING = "WARNING"


@dataclass(frozen=True)
class CommodityPurchase:
    """T1: bank buys a commodity lot from the venue"""

    commodity_id: str
    commodity_type: CommodityType
    quantity: Decimal  # metric tonnes, 3 decimal places
    unit_price: Decimal  # MYR per MT
    total_amount: Decimal  # fixed to the financing principal
    venue_reference: str
    timestamp: datetime
    seller: str
    buyer: str
    certificate_number: str

    def to_dict(self) -> Dict[str, Any]:
        return _trade_to_dict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CommodityPurchase":
        return cls(**_trade_kwargs(data))


@dataclass(frozen=True)
class CommoditySale:
    """T2: customer resells the same lot to a third party"""

    commodity_id: str
    commodity_type: CommodityType
    quantity: Decimal
    unit_price: Decimal
    total_amount: Decimal
    venue_reference: str
    timestamp: datetime
    seller: str
    buyer: str
    certificate_number: str

    def to_dict(self) -> Dict[str, Any]:
        return _trade_to_dict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CommoditySale":
        return cls(**_trade_kwargs(data))


@dataclass(frozen=True)
class CertificateVerification:
    """Venue answer for a certificate lookup"""

    valid: bool
    issuer: str
    issued_at: datetime


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a single compliance rule"""

    rule: str
    passed: bool
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule": self.rule,
            "passed": self.passed,
            "message": self.message,
            "details": self.details,
        }


@dataclass(frozen=True)
class ValidationSummary:
    passed: int
    failed: int
    warnings: int


@dataclass(frozen=True)
class ValidationReport:
    """Full T1+T2 compliance report"""

    overall_result: ComplianceVerdict
    validated_at: datetime
    validator_version: str
    results: Tuple[ValidationResult, ...]
    summary: ValidationSummary

    def result_for(self, rule: str) -> Optional[ValidationResult]:
        return next((r for r in self.results if r.rule == rule), None)

    @property
    def failed_rules(self) -> List[str]:
        return [r.rule for r in self.results if not r.passed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_result": self.overall_result.value,
            "validated_at": self.validated_at.isoformat(),
            "validator_version": self.validator_version,
            "results": [r.to_dict() for r in self.results],
            "summary": {
                "passed": self.summary.passed,
                "failed": self.summary.failed,
                "warnings": self.summary.warnings,
            },
        }


@dataclass
class ProcessingResult:
    """Stable result contract returned by every orchestrator step"""

    success: bool
    new_status: str
    message: str
    details: Optional[Dict[str, Any]] = None


def _trade_to_dict(trade) -> Dict[str, Any]:
    return {
        "commodity_id": trade.commodity_id,
        "commodity_type": trade.commodity_type.value,
        "quantity": str(trade.quantity),
        "unit_price": str(trade.unit_price),
        "total_amount": str(trade.total_amount),
        "venue_reference": trade.venue_reference,
        "timestamp": trade.timestamp.isoformat(),
        "seller": trade.seller,
        "buyer": trade.buyer,
        "certificate_number": trade.certificate_number,
    }


def _trade_kwargs(data: Dict[str, Any]) -> Dict[str, Any]:
    # Raises KeyError/ValueError on malformed payloads; callers map these
    return {
        "commodity_id": data["commodity_id"],
        "commodity_type": CommodityType(data["commodity_type"]),
        "quantity": Decimal(str(data["quantity"])),
        "unit_price": Decimal(str(data["unit_price"])),
        "total_amount": Decimal(str(data["total_amount"])),
        "venue_reference": data["venue_reference"],
        "timestamp": datetime.fromisoformat(data["timestamp"]),
        "seller": data["seller"],
        "buyer": data["buyer"],
        "certificate_number": data["certificate_number"],
    }
