"""ProviderClient: one interface over the interchangeable VTU vendors.

The active vendor and its credentials are read from the settings store on every call.
"""
import logging

import requests

from config import settings as app_settings
from errors import ConfigurationError, NetworkUnreachable, ProviderRejected
from models import (
    AirtimeRequest, CableRequest, CustomerVerification, DataRequest, ElectricityRequest,
    MeterValidationRequest, ProviderResponse, SmartCardValidationRequest, TransactionStatus,
)
from repositories import SettingsRepository

NETWORK_MAPPINGS = {
    "mtn": 1,
    "airtel": 2,
    "glo": 3,
    "9mobile": 4,
}

CABLE_MAPPINGS = {
    "gotv": 1,
    "dstv": 2,
    "startime": 3,
}

DISCO_MAPPINGS = {
    "ikeja": "ikeja-electric",
    "eko": "eko-electric",
    "ibadan": "ibadan-electric",
    "abuja": "abuja-electric",
}

METER_TYPES = {"prepaid": 1, "postpaid": 2}

ACTIVE_PROVIDER_KEY = "active_api_provider"

SUCCESS_STATUSES = {"successful", "success", "completed", "delivered"}
PENDING_STATUSES = {"processing", "pending", "initiated"}
FAILED_STATUSES = {"failed", "fail", "error", "reversed", "refunded", "cancelled"}


def disco_name(disco_code: str) -> str:
    code = disco_code.strip().lower()
    return DISCO_MAPPINGS.get(code, code)


class VTUBackend:
    """Token-authenticated VTU vendor speaking the common /api/* dialect."""

    name = ""
    operations = {"buy_airtime", "buy_data", "buy_electricity", "buy_cable", "validate_meter", "validate_smart_card"}

    def __init__(self, token: str, base_url: str, timeout: int = 30, session=None):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def placeholder_token(self):
        return f"YOUR_{self.name.upper()}_TOKEN_HERE"

    def supports(self, operation: str) -> bool:
        return operation in self.operations

    def request(self, method: str, endpoint: str, payload=None, params=None) -> dict:
        headers = {
            "Authorization": f"Token {self.token}",
            "Content-Type": "application/json",
        }
        try:
            response = self.session.request(
                method,
                f"{self.base_url}{endpoint}",
                json=payload if method == "POST" else None,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            logging.error(f"{self.name} request to {endpoint} timed out: {e}")
            raise NetworkUnreachable("Provider request timed out", provider=self.name)
        except requests.exceptions.RequestException as e:
            logging.error(f"{self.name} request to {endpoint} failed: {e}")
            raise NetworkUnreachable("Provider unreachable", provider=self.name)

        if response.status_code in (401, 403):
            logging.error(f"{self.name} rejected our credentials ({response.status_code})")
            raise ConfigurationError("Provider rejected the configured credentials", provider=self.name,
                                     status_code=response.status_code)
        if response.status_code == 429 or response.status_code >= 500:
            logging.error(f"{self.name} unavailable: {response.status_code} - {response.text}")
            raise NetworkUnreachable("Provider temporarily unavailable", provider=self.name,
                                     status_code=response.status_code, vendor_message=response.text)
        if response.status_code >= 400:
            logging.warning(f"{self.name} rejected request: {response.status_code} - {response.text}")
            raise ProviderRejected("Provider rejected the request", provider=self.name,
                                   status_code=response.status_code, vendor_message=response.text)

        if "application/json" not in response.headers.get("content-type", ""):
            return {"success": True, "status": response.status_code}
        try:
            return response.json()
        except ValueError:
            return {"success": True, "status": response.status_code}

    def buy_airtime(self, req: AirtimeRequest) -> dict:
        return self.request("POST", "/api/topup/", {
            "network": req.network_code,
            "amount": str(req.amount),
            "mobile_number": req.phone_number,
            "Ported_number": req.ported_number,
            "airtime_type": "VTU",
        })

    def data_payload(self, req: DataRequest) -> dict:
        return {
            "network": req.network_code,
            "mobile_number": req.phone_number,
            "plan": req.plan_external_id,
            "Ported_number": req.ported_number,
        }

    def buy_data(self, req: DataRequest) -> dict:
        return self.request("POST", "/api/data/", self.data_payload(req))

    def buy_electricity(self, req: ElectricityRequest) -> dict:
        return self.request("POST", "/api/billpayment/", {
            "disco_name": disco_name(req.disco_code),
            "amount": str(req.amount),
            "meter_number": req.meter_number,
            "MeterType": METER_TYPES[req.meter_type.value],
        })

    def buy_cable(self, req: CableRequest) -> dict:
        return self.request("POST", "/api/cablesub/", {
            "cablename": req.cable_code,
            "cableplan": req.plan_external_id,
            "smart_card_number": req.smart_card_number,
        })

    def validate_meter(self, req: MeterValidationRequest) -> dict:
        return self.request("GET", "/api/validatemeter", params={
            "meternumber": req.meter_number,
            "disconame": disco_name(req.disco_code),
            "mtype": METER_TYPES[req.meter_type.value],
        })

    def validate_smart_card(self, req: SmartCardValidationRequest) -> dict:
        return self.request("GET", "/api/validateiuc", params={
            "smart_card_number": req.smart_card_number,
            "cablename": req.cable_code,
        })


class NaijaDataSubBackend(VTUBackend):
    name = "naijadatasub"


class MaskawaBackend(VTUBackend):
    name = "maskawa"
    operations = {"buy_airtime", "buy_data", "buy_electricity"}

    def data_payload(self, req: DataRequest) -> dict:
        try:
            plan = int(req.plan_external_id)
        except ValueError:
            raise ProviderRejected(f"Invalid data plan ID: {req.plan_external_id}", provider=self.name)
        payload = super().data_payload(req)
        payload.update(plan=plan, payment_medium="MAIN WALLET")
        return payload


BACKENDS = {
    MaskawaBackend.name: MaskawaBackend,
    NaijaDataSubBackend.name: NaijaDataSubBackend,
}


def _vendor_status(raw: dict) -> str:
    return str(raw.get("Status") or raw.get("status") or "").strip().lower()


def _vendor_message(raw: dict):
    return raw.get("api_response") or raw.get("message") or raw.get("error") or raw.get("msg")


class ProviderClient:

    def __init__(self, settings_repo: SettingsRepository, timeout: int = None, session=None):
        self.settings_repo = settings_repo
        self.timeout = timeout or app_settings.PROVIDER_TIMEOUT_SECONDS
        self.session = session

    def active_backend(self) -> VTUBackend:
        active = self.settings_repo.get(ACTIVE_PROVIDER_KEY) or app_settings.DEFAULT_API_PROVIDER
        active = active.strip().lower()
        backend_cls = BACKENDS.get(active)
        if backend_cls is None:
            raise ConfigurationError(f"Unknown API provider {active!r}", provider=active)

        values = self.settings_repo.get_many([f"{active}_token", f"{active}_base_url"])
        token = (values.get(f"{active}_token") or "").strip()
        base_url = (values.get(f"{active}_base_url") or "").strip()
        if not token or not base_url:
            raise ConfigurationError("API configuration not found", provider=active)

        backend = backend_cls(token, base_url, timeout=self.timeout, session=self.session)
        if token == backend.placeholder_token:
            raise ConfigurationError("API token not configured. Please update the token in admin settings.",
                                     provider=active)
        return backend

    def _call(self, operation: str, req) -> dict:
        backend = self.active_backend()
        if not backend.supports(operation):
            raise ConfigurationError(f"{backend.name} does not support {operation}", provider=backend.name)
        logging.info(f"Calling {backend.name}.{operation}")
        raw = getattr(backend, operation)(req)
        if not isinstance(raw, dict):
            raw = {"data": raw}
        raw.setdefault("provider", backend.name)
        return raw

    def _purchase(self, operation: str, req) -> ProviderResponse:
        raw = self._call(operation, req)
        status = _vendor_status(raw)
        message = _vendor_message(raw)

        if status in FAILED_STATUSES or (raw.get("error") and status not in SUCCESS_STATUSES):
            raise ProviderRejected(message or "Provider reported failure", provider=raw["provider"],
                                   vendor_message=message, vendor_response=raw)

        provider_reference = raw.get("id") or raw.get("ident") or raw.get("reference") or raw.get("request_id")
        return ProviderResponse(
            success=True,
            status=TransactionStatus.PENDING if status in PENDING_STATUSES else TransactionStatus.SUCCESS,
            provider_reference=str(provider_reference) if provider_reference is not None else None,
            message=message,
            raw=raw,
        )

    def _verify(self, operation: str, req) -> CustomerVerification:
        raw = self._call(operation, req)
        name = raw.get("name") or raw.get("Customer_Name") or raw.get("customer_name")
        if raw.get("invalid") or not name:
            raise ProviderRejected("Could not verify customer details", provider=raw["provider"],
                                   vendor_response=raw)
        return CustomerVerification(
            customer_name=str(name).strip(),
            address=raw.get("address") or raw.get("Address"),
            due_date=raw.get("due_date") or raw.get("Due_Date"),
            raw=raw,
        )

    def buy_airtime(self, req: AirtimeRequest) -> ProviderResponse:
        return self._purchase("buy_airtime", req)

    def buy_data(self, req: DataRequest) -> ProviderResponse:
        return self._purchase("buy_data", req)

    def buy_electricity(self, req: ElectricityRequest) -> ProviderResponse:
        return self._purchase("buy_electricity", req)

    def buy_cable(self, req: CableRequest) -> ProviderResponse:
        return self._purchase("buy_cable", req)

    def validate_meter(self, req: MeterValidationRequest) -> CustomerVerification:
        return self._verify("validate_meter", req)

    def validate_smart_card(self, req: SmartCardValidationRequest) -> CustomerVerification:
        return self._verify("validate_smart_card", req)
