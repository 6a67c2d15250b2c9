from decimal import Decimal

import pytest

from errors import InvalidAmount, UnknownPlan
from memory_store import InMemorySettingsRepository
from models import TransactionType
from services.pricing import PlanPricing, price_key


@pytest.fixture
def pricing():
    return PlanPricing(InMemorySettingsRepository())


class TestPlanPricing:

    def test_set_and_read(self, pricing):
        assert pricing.set_price(TransactionType.DATA, 1, "217", "300") == Decimal("300.00")
        assert pricing.price(TransactionType.DATA, 1, " 217 ") == Decimal("300.00")

    def test_prices_are_per_network_and_kind(self, pricing):
        pricing.set_price(TransactionType.DATA, 1, "217", "300")

        with pytest.raises(UnknownPlan):
            pricing.price(TransactionType.DATA, 2, "217")
        with pytest.raises(UnknownPlan):
            pricing.price(TransactionType.CABLE, 1, "217")

    def test_corrupt_stored_price(self, pricing):
        pricing.settings_repo.set(price_key(TransactionType.CABLE, 2, "7"), "free")
        with pytest.raises(UnknownPlan):
            pricing.price(TransactionType.CABLE, 2, "7")

    def test_rejects_bad_prices(self, pricing):
        with pytest.raises(InvalidAmount):
            pricing.set_price(TransactionType.DATA, 1, "217", "0")

    def test_only_plan_types(self, pricing):
        with pytest.raises(ValueError):
            pricing.set_price(TransactionType.AIRTIME, 1, "x", "100")
