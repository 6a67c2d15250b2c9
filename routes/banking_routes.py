from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from dependencies import Services, get_services
from errors import NetworkUnreachable, ProviderRejected, TransactionNotFound
from models import (
    AirtimePurchase, AirtimeRequest, CablePurchase, CableRequest, DataPurchase, DataRequest, DepositRequest,
    ElectricityPurchase, ElectricityRequest, MeterValidationRequest, SmartCardValidationRequest,
    TransactionRecord, TransactionStatus, TransactionType, User,
)
from routes.auth_routes import get_current_user
import logging

router = APIRouter()

FAILURE_STATUS_CODES = {
    NetworkUnreachable.code: NetworkUnreachable.status_code,
    ProviderRejected.code: ProviderRejected.status_code,
}


def _receipt(record: TransactionRecord) -> dict:
    return {
        "id": record.id,
        "reference": record.reference,
        "type": record.type.value,
        "amount": str(record.amount),
        "status": record.status.value,
        "provider_reference": record.details.get("provider_reference"),
        "reconciliation_required": record.reconciliation_required,
        "created_at": record.created_at.isoformat(),
    }


def _settle_purchase(services: Services, user: User, kind: TransactionType, pin: str, request, amount):
    services.pin_guard.authorize(user.id, pin)
    record = services.engine.purchase(user.id, kind, request, amount)

    if record.status == TransactionStatus.FAILED:
        failure_code = record.details.get("failure_code")
        logging.error(f"{kind.value} purchase {record.reference} failed for user {user.id}: {failure_code}")
        return JSONResponse(
            status_code=FAILURE_STATUS_CODES.get(failure_code, 502),
            content={
                "detail": "Transaction failed. Please try again.",
                "code": failure_code,
                "reference": record.reference,
                "transaction": _receipt(record),
            },
        )

    message = "Transaction successful" if record.status == TransactionStatus.SUCCESS else "Transaction processing"
    return {
        "message": message,
        "transaction": _receipt(record),
        "new_balance": str(services.ledger.get_balance(user.id)),
    }


@router.get("/balance/")
async def get_balance(current_user: User = Depends(get_current_user), services: Services = Depends(get_services)):
    return {"balance": str(services.ledger.get_balance(current_user.id))}


@router.post("/deposit/", status_code=201)
async def initiate_deposit(body: DepositRequest, current_user: User = Depends(get_current_user),
                           services: Services = Depends(get_services)):
    logging.info(f"Deposit initiated by user: {current_user.id}, amount: {body.amount}")
    record = services.engine.initiate_funding(current_user.id, body.amount)
    return {"message": "Deposit pending", "reference": record.reference, "transaction": _receipt(record)}


@router.get("/transactions/")
async def get_transactions(
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    records = services.transactions.list_for_user(current_user.id, limit=limit)
    return {"transactions": [record.model_dump(mode="json") for record in records]}


@router.get("/transactions/{reference}")
async def get_transaction(
    reference: str,
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    record = services.transactions.get_by_reference(reference)
    if not record or (record.user_id != current_user.id and not current_user.is_admin):
        raise TransactionNotFound()
    return record.model_dump(mode="json")


@router.post("/airtime/")
def buy_airtime(body: AirtimePurchase, current_user: User = Depends(get_current_user),
                services: Services = Depends(get_services)):
    logging.info(f"Airtime request received for user: {current_user.id}, amount: {body.amount}")
    request = AirtimeRequest(**body.model_dump(exclude={"pin"}))
    return _settle_purchase(services, current_user, TransactionType.AIRTIME, body.pin, request, body.amount)


@router.post("/data/")
def buy_data(body: DataPurchase, current_user: User = Depends(get_current_user),
             services: Services = Depends(get_services)):
    logging.info(f"Data request received for user: {current_user.id}, plan: {body.plan_external_id}")
    request = DataRequest(**body.model_dump(exclude={"pin"}))
    amount = services.pricing.price(TransactionType.DATA, body.network_code, body.plan_external_id)
    return _settle_purchase(services, current_user, TransactionType.DATA, body.pin, request, amount)


@router.post("/electricity/")
def buy_electricity(body: ElectricityPurchase, current_user: User = Depends(get_current_user),
                    services: Services = Depends(get_services)):
    logging.info(f"Electricity request received for user: {current_user.id}, amount: {body.amount}")
    request = ElectricityRequest(**body.model_dump(exclude={"pin"}))
    return _settle_purchase(services, current_user, TransactionType.ELECTRICITY, body.pin, request, body.amount)


@router.post("/cable/")
def buy_cable(body: CablePurchase, current_user: User = Depends(get_current_user),
              services: Services = Depends(get_services)):
    logging.info(f"Cable request received for user: {current_user.id}, plan: {body.plan_external_id}")
    request = CableRequest(**body.model_dump(exclude={"pin"}))
    amount = services.pricing.price(TransactionType.CABLE, body.cable_code, body.plan_external_id)
    return _settle_purchase(services, current_user, TransactionType.CABLE, body.pin, request, amount)


@router.post("/electricity/validate/")
def validate_meter(body: MeterValidationRequest, current_user: User = Depends(get_current_user),
                   services: Services = Depends(get_services)):
    verification = services.providers.validate_meter(body)
    return verification.model_dump(exclude={"raw"})


@router.post("/cable/validate/")
def validate_smart_card(body: SmartCardValidationRequest, current_user: User = Depends(get_current_user),
                        services: Services = Depends(get_services)):
    verification = services.providers.validate_smart_card(body)
    return verification.model_dump(exclude={"raw"})
