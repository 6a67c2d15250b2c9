from fastapi import APIRouter, Depends, HTTPException, Query
from dependencies import Services, get_services
from errors import UserNotFound
from models import AuditEntry, FundWalletRequest, PlanPriceUpdate, ProviderSettingsUpdate, TransactionType, User
from routes.auth_routes import get_admin_user
from services.pricing import PRICED_TYPES
from services.providers import ACTIVE_PROVIDER_KEY, BACKENDS
import logging

router = APIRouter()


@router.post("/users/{user_id}/pin/reset/")
async def reset_user_pin(user_id: str, admin: User = Depends(get_admin_user),
                         services: Services = Depends(get_services)):
    services.pin_guard.reset_pin_for_admin(user_id, admin.id)
    return {"success": True}


@router.post("/users/{user_id}/fund/", status_code=201)
async def fund_user_wallet(user_id: str, body: FundWalletRequest, admin: User = Depends(get_admin_user),
                           services: Services = Depends(get_services)):
    logging.info(f"Admin {admin.id} funding wallet of user {user_id} with {body.amount}")
    record = services.engine.fund_wallet(user_id, body.amount, actor_id=admin.id, note=body.note)
    return {
        "transaction": record.model_dump(mode="json"),
        "new_balance": str(services.ledger.get_balance(user_id)),
    }


@router.get("/users/{user_id}/balance/")
async def get_user_balance(user_id: str, admin: User = Depends(get_admin_user),
                           services: Services = Depends(get_services)):
    """Live balance next to what the transaction log adds up to."""
    if services.users.get(user_id) is None:
        raise UserNotFound()
    summary = services.engine.balance_summary(user_id)
    return {key: str(value) for key, value in summary.items()}


@router.get("/audit-logs/")
async def get_audit_logs(
    action: str = None,
    limit: int = Query(50, ge=1, le=500),
    admin: User = Depends(get_admin_user),
    services: Services = Depends(get_services),
):
    return {"logs": [entry.model_dump(mode="json") for entry in services.audit_log.list(limit=limit, action=action)]}


@router.get("/transactions/reconciliation/")
async def get_reconciliation_queue(
    limit: int = Query(50, ge=1, le=500),
    admin: User = Depends(get_admin_user),
    services: Services = Depends(get_services),
):
    records = services.transactions.list_reconciliation_required(limit=limit)
    return {"transactions": [record.model_dump(mode="json") for record in records]}


@router.get("/settings/provider/")
async def get_provider_settings(admin: User = Depends(get_admin_user), services: Services = Depends(get_services)):
    keys = [ACTIVE_PROVIDER_KEY] + [f"{name}_base_url" for name in BACKENDS]
    values = services.api_settings.get_many(keys)
    tokens = services.api_settings.get_many([f"{name}_token" for name in BACKENDS])
    return {
        "active_provider": values.get(ACTIVE_PROVIDER_KEY),
        "providers": {
            name: {
                "base_url": values.get(f"{name}_base_url"),
                "token_configured": bool(tokens.get(f"{name}_token")),
            }
            for name in BACKENDS
        },
    }


@router.put("/settings/provider/")
async def update_provider_settings(body: ProviderSettingsUpdate, admin: User = Depends(get_admin_user),
                                   services: Services = Depends(get_services)):
    provider = body.active_provider.strip().lower()
    if provider not in BACKENDS:
        raise HTTPException(status_code=400, detail=f"Unknown provider. Choose one of: {', '.join(BACKENDS)}")

    services.api_settings.set(ACTIVE_PROVIDER_KEY, provider)
    if body.token:
        services.api_settings.set(f"{provider}_token", body.token.strip())
    if body.base_url:
        services.api_settings.set(f"{provider}_base_url", body.base_url.strip())

    services.audit_log.add(AuditEntry(
        actor_id=admin.id,
        action="update_provider_settings",
        details={"active_provider": provider, "token_updated": bool(body.token), "base_url": body.base_url},
    ))
    logging.info(f"Admin {admin.id} switched active API provider to {provider}")
    return {"active_provider": provider}


@router.put("/plans/{kind}/{provider_code}/{plan_external_id}/price/")
async def update_plan_price(kind: TransactionType, provider_code: int, plan_external_id: str, body: PlanPriceUpdate,
                            admin: User = Depends(get_admin_user), services: Services = Depends(get_services)):
    if kind not in PRICED_TYPES:
        raise HTTPException(status_code=400, detail="Only data and cable plans are priced")

    price = services.pricing.set_price(kind, provider_code, plan_external_id, body.price)
    services.audit_log.add(AuditEntry(
        actor_id=admin.id,
        action="update_plan_price",
        details={"kind": kind.value, "provider_code": provider_code, "plan_external_id": plan_external_id,
                 "price": str(price)},
    ))
    logging.info(f"Admin {admin.id} priced {kind.value} plan {plan_external_id} ({provider_code}) at {price}")
    return {"kind": kind.value, "provider_code": provider_code, "plan_external_id": plan_external_id,
            "price": str(price)}
