from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from utils import create_access_token, decode_access_token, hash_password, verify_password
from dependencies import Services, get_services
from errors import Unauthenticated
from models import UserRegister, User
import logging

router = APIRouter()
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login/", auto_error=False)


async def get_current_user(token: str = Depends(oauth2_scheme), services: Services = Depends(get_services)) -> User:
    if not token:
        raise Unauthenticated()
    payload = decode_access_token(token)
    user_id = payload.get("user_id")
    user = services.users.get(user_id) if user_id else None
    if not user:
        raise Unauthenticated("User not found")
    return user


async def get_admin_user(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(status_code=403, detail="Admin privileges required")
    return current_user


@router.post("/register/", status_code=201)
async def register(body: UserRegister, services: Services = Depends(get_services)):
    if services.users.get_by_email(body.email):
        raise HTTPException(status_code=400, detail="Email already exists")

    user = services.users.create(
        name=body.name,
        email=body.email,
        phone=body.phone,
        password_hash=hash_password(body.password),
    )
    logging.info(f"Registered user {user.id}")
    return {"message": "User registered successfully", "user_id": user.id}


@router.post("/login/")
async def login(form_data: OAuth2PasswordRequestForm = Depends(), services: Services = Depends(get_services)):
    user = services.users.get_by_email(form_data.username)
    if not user or not verify_password(form_data.password, services.users.get_password_hash(user.id)):
        raise HTTPException(status_code=400, detail="Invalid credentials")
    token = create_access_token(data={"user_id": user.id})
    return {"access_token": token, "token_type": "bearer"}


@router.get("/users/me/")
async def read_users_me(current_user: User = Depends(get_current_user)):
    """
    Endpoint to get the current authenticated user's profile.
    """
    return current_user.model_dump(mode="json")
