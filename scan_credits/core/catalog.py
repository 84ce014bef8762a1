"""
Operation kinds and credit packs.

Static pricing tables: what each scan tier costs and what each purchasable
pack grants.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Tuple, Union


class OperationKind(Enum):
    """Tiers of scan a user can request."""
    BASIC = "basic"
    DEEP = "deep"
    ULTRA = "ultra"


@dataclass(frozen=True)
class OperationCost:
    """Unit cost and description of one operation kind."""
    kind: OperationKind
    units: int
    name: str
    description: str
    features: Tuple[str, ...] = ()


# Fixed cost table - every OperationKind has exactly one entry
OPERATION_COSTS: Dict[OperationKind, OperationCost] = {
    OperationKind.BASIC: OperationCost(
        kind=OperationKind.BASIC,
        units=1,
        name="Basic Scan",
        description="Red flags and summary",
        features=("Key compliance risks", "Executive summary", "Risk score")
    ),
    OperationKind.DEEP: OperationCost(
        kind=OperationKind.DEEP,
        units=3,
        name="Deep Scan",
        description="Detailed analysis with citations",
        features=("Transaction-level analysis", "Legal citations", "Region-specific compliance")
    ),
    OperationKind.ULTRA: OperationCost(
        kind=OperationKind.ULTRA,
        units=10,
        name="Ultra Scan",
        description="Full report with recommendations",
        features=("PDF report download", "CSV audit log", "Remediation roadmap", "Priority action items")
    ),
}


def resolve_operation_kind(value: Union[OperationKind, str, None]) -> Optional[OperationKind]:
    """Map an enum member or its string value to an OperationKind.

    Returns None for anything that is not a known kind, so callers must
    handle the unknown case explicitly.
    """
    if isinstance(value, OperationKind):
        return value
    if not isinstance(value, str):
        return None
    try:
        return OperationKind(value.strip().lower())
    except ValueError:
        return None


@dataclass(frozen=True)
class CreditPack:
    """A purchasable bundle of credits."""
    pack_id: str
    credits: int
    price: Decimal
    popular: bool = False

    @property
    def price_per_credit(self) -> Decimal:
        return (self.price / self.credits).quantize(Decimal("0.01"))


CREDIT_PACKS: Tuple[CreditPack, ...] = (
    CreditPack(pack_id="starter", credits=10, price=Decimal("10.00")),
    CreditPack(pack_id="professional", credits=50, price=Decimal("40.00"), popular=True),
    CreditPack(pack_id="business", credits=200, price=Decimal("120.00")),
)


def get_credit_pack(pack_id: str) -> CreditPack:
    """Get a credit pack by identifier.

    Args:
        pack_id: Pack identifier

    Returns:
        The matching CreditPack

    Raises:
        ValueError: If the pack does not exist
    """
    for pack in CREDIT_PACKS:
        if pack.pack_id == pack_id:
            return pack
    raise ValueError(f"Unknown credit pack: {pack_id}")
