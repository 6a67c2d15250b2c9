from fastapi import APIRouter, Depends, HTTPException
from dependencies import Services, get_services
from errors import InvalidPin
from models import ResetPinRequest, SetPinRequest, User, VerifyPinRequest
from routes.auth_routes import get_current_user
from utils import verify_password

router = APIRouter()


@router.post("/set/")
async def set_pin(body: SetPinRequest, current_user: User = Depends(get_current_user),
                  services: Services = Depends(get_services)):
    services.pin_guard.set_pin(current_user.id, body.new_pin, body.current_pin)
    return {"message": "Transaction PIN saved", "has_pin": True}


@router.post("/verify/")
async def verify_pin(body: VerifyPinRequest, current_user: User = Depends(get_current_user),
                     services: Services = Depends(get_services)):
    if not services.pin_guard.verify_pin(current_user.id, body.pin):
        status = services.pin_guard.pin_status(current_user.id)
        raise InvalidPin(remaining_attempts=status["remaining_attempts"])
    return {"verified": True}


@router.get("/status/")
async def pin_status(current_user: User = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.pin_guard.pin_status(current_user.id)


@router.post("/reset/")
async def reset_pin(body: ResetPinRequest, current_user: User = Depends(get_current_user),
                    services: Services = Depends(get_services)):
    """Self-service reset; the account password stands in for re-authentication."""
    if not verify_password(body.password, services.users.get_password_hash(current_user.id)):
        raise HTTPException(status_code=400, detail="Invalid credentials")
    services.pin_guard.reset_pin(current_user.id)
    return {"message": "Transaction PIN reset", "has_pin": False}
