import logging
from decimal import Decimal

from errors import InvalidAmount, UnknownPlan
from models import TransactionType
from repositories import SettingsRepository
from utils import parse_amount

PRICED_TYPES = (TransactionType.DATA, TransactionType.CABLE)


def price_key(kind: TransactionType, provider_code, plan_external_id: str) -> str:
    return f"{kind.value}_plan_price:{provider_code}:{plan_external_id.strip()}"


class PlanPricing:
    """Selling prices for data and cable plans, keyed by network or cable code and vendor plan id."""

    def __init__(self, settings_repo: SettingsRepository):
        self.settings_repo = settings_repo

    def _check_kind(self, kind):
        kind = TransactionType(kind)
        if kind not in PRICED_TYPES:
            raise ValueError(f"{kind.value} purchases are not priced by plan")
        return kind

    def price(self, kind, provider_code, plan_external_id: str) -> Decimal:
        kind = self._check_kind(kind)
        value = self.settings_repo.get(price_key(kind, provider_code, plan_external_id))
        if not value:
            logging.info(f"No selling price for {kind.value} plan {plan_external_id} ({provider_code})")
            raise UnknownPlan(kind=kind.value, plan_external_id=plan_external_id)
        try:
            return parse_amount(value)
        except InvalidAmount:
            logging.error(f"Stored price {value!r} for {kind.value} plan {plan_external_id} is invalid")
            raise UnknownPlan(kind=kind.value, plan_external_id=plan_external_id)

    def set_price(self, kind, provider_code, plan_external_id: str, price) -> Decimal:
        kind = self._check_kind(kind)
        price = parse_amount(price)
        self.settings_repo.set(price_key(kind, provider_code, plan_external_id), str(price))
        return price
