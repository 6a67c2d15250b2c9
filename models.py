from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, EmailStr, Field, condecimal, constr

PhoneNumber = constr(pattern=r"^0[789][01]\d{8}$")
Pin = constr(pattern=r"^\d{4}$")
Money = condecimal(gt=0, max_digits=14, decimal_places=2)


def utcnow():
    return datetime.now(timezone.utc)


class TransactionType(str, Enum):
    AIRTIME = "airtime"
    DATA = "data"
    ELECTRICITY = "electricity"
    CABLE = "cable"
    WALLET_FUNDING = "wallet_funding"
    REFUND = "refund"


PURCHASE_TYPES = (
    TransactionType.AIRTIME,
    TransactionType.DATA,
    TransactionType.ELECTRICITY,
    TransactionType.CABLE,
)


class TransactionStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class MeterType(str, Enum):
    PREPAID = "prepaid"
    POSTPAID = "postpaid"


# --- Domain records ---

class User(BaseModel):
    id: str
    name: str
    email: EmailStr
    phone: Optional[str] = None
    wallet_balance: Decimal = Decimal("0.00")
    has_pin: bool = False
    pin_hash: Optional[str] = Field(default=None, exclude=True)
    pin_failure_count: int = 0
    pin_locked_until: Optional[datetime] = None
    is_admin: bool = False


class TransactionRecord(BaseModel):
    id: str
    user_id: str
    type: TransactionType
    amount: Decimal
    status: TransactionStatus
    reference: str
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def reconciliation_required(self) -> bool:
        return bool(self.details.get("reconciliation_required"))

    @property
    def is_terminal(self) -> bool:
        """Failed, webhook-confirmed and already-credited records accept no further transitions."""
        return (
            self.status == TransactionStatus.FAILED
            or "webhook_data" in self.details
            or bool(self.details.get("credited"))
        )


class AuditEntry(BaseModel):
    actor_id: Optional[str] = None
    action: str
    target_user_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    details: Dict[str, Any] = Field(default_factory=dict)


class BalanceChanged(BaseModel):
    user_id: str
    previous_balance: Decimal
    new_balance: Decimal
    delta: Decimal
    reason: str
    reference: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


# --- Provider requests / responses ---

class AirtimeRequest(BaseModel):
    network_code: int = Field(ge=1, le=4)
    amount: Money
    phone_number: PhoneNumber
    ported_number: bool = True


class DataRequest(BaseModel):
    network_code: int = Field(ge=1, le=4)
    phone_number: PhoneNumber
    plan_external_id: str
    ported_number: bool = True


class ElectricityRequest(BaseModel):
    disco_code: str
    amount: Money
    meter_number: str = Field(min_length=6, max_length=20)
    meter_type: MeterType = MeterType.PREPAID


class CableRequest(BaseModel):
    cable_code: int = Field(ge=1, le=3)
    plan_external_id: str
    smart_card_number: str = Field(min_length=6, max_length=20)


class MeterValidationRequest(BaseModel):
    disco_code: str
    meter_number: str = Field(min_length=6, max_length=20)
    meter_type: MeterType = MeterType.PREPAID


class SmartCardValidationRequest(BaseModel):
    cable_code: int = Field(ge=1, le=3)
    smart_card_number: str = Field(min_length=6, max_length=20)


class ProviderResponse(BaseModel):
    success: bool
    status: TransactionStatus = TransactionStatus.SUCCESS
    provider_reference: Optional[str] = None
    message: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class CustomerVerification(BaseModel):
    customer_name: str
    address: Optional[str] = None
    due_date: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


# --- API bodies ---

class UserRegister(BaseModel):
    name: str
    email: EmailStr
    password: str = Field(min_length=6)
    phone: PhoneNumber


class AirtimePurchase(AirtimeRequest):
    pin: Pin


class DataPurchase(DataRequest):
    pin: Pin


class ElectricityPurchase(ElectricityRequest):
    pin: Pin


class CablePurchase(CableRequest):
    pin: Pin


class SetPinRequest(BaseModel):
    new_pin: Pin
    current_pin: Optional[str] = None


class VerifyPinRequest(BaseModel):
    pin: str


class ResetPinRequest(BaseModel):
    password: str


class FundWalletRequest(BaseModel):
    amount: Money
    note: str = "Manual wallet funding"


class DepositRequest(BaseModel):
    amount: Money


class PlanPriceUpdate(BaseModel):
    price: Money


class ProviderSettingsUpdate(BaseModel):
    active_provider: str
    token: Optional[str] = None
    base_url: Optional[str] = None


class WebhookData(BaseModel):
    reference: str
    reason: Optional[str] = None


class ProviderWebhook(BaseModel):
    event: str
    data: WebhookData
