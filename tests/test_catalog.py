"""
Tests for operation costs and credit packs.
"""
from decimal import Decimal

import pytest

from scan_credits.core.catalog import (
    CREDIT_PACKS,
    OPERATION_COSTS,
    OperationKind,
    get_credit_pack,
    resolve_operation_kind
)


class TestOperationCosts:
    """Test the static cost table."""

    def test_every_kind_has_a_cost(self):
        assert set(OPERATION_COSTS) == set(OperationKind)

    def test_costs(self):
        assert OPERATION_COSTS[OperationKind.BASIC].units == 1
        assert OPERATION_COSTS[OperationKind.DEEP].units == 3
        assert OPERATION_COSTS[OperationKind.ULTRA].units == 10

    @pytest.mark.parametrize("value, expected", [
        (OperationKind.DEEP, OperationKind.DEEP),
        ("ultra", OperationKind.ULTRA),
        (" Basic ", OperationKind.BASIC),
        ("mega", None),
        ("", None),
        (None, None),
        (3, None),
    ])
    def test_resolve_operation_kind(self, value, expected):
        assert resolve_operation_kind(value) == expected


class TestCreditPacks:
    """Test purchasable packs."""

    def test_get_pack(self):
        pack = get_credit_pack("professional")
        assert pack.credits == 50
        assert pack.price == Decimal("40.00")
        assert pack.popular
        assert pack.price_per_credit == Decimal("0.80")

    def test_unknown_pack(self):
        with pytest.raises(ValueError, match="Unknown credit pack"):
            get_credit_pack("enterprise")

    def test_exactly_one_popular_pack(self):
        assert sum(1 for pack in CREDIT_PACKS if pack.popular) == 1
