from jose import JWTError, jwt
import datetime
import hashlib
import hmac
import time
from decimal import Decimal, InvalidOperation
from passlib.context import CryptContext
from bson import ObjectId

from config import settings
from errors import InvalidAmount, Unauthenticated

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

KOBO = Decimal("0.01")


def create_access_token(data: dict):
    to_encode = data.copy()
    expire = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(days=settings.ACCESS_TOKEN_EXPIRE_DAYS)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str):
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token expired")
    except JWTError:
        raise Unauthenticated("Invalid token")


def hash_password(password: str):
    return pwd_context.hash(password)


def verify_password(password: str, hashed_password: str):
    return pwd_context.verify(password, hashed_password)


def pin_context(rounds: int = None) -> CryptContext:
    """Separate context for transaction PINs so their cost can be tuned apart from passwords."""
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds or settings.PIN_HASH_ROUNDS)


# Money helpers: naira at the edges, integer kobo in storage

def parse_amount(amount) -> Decimal:
    if isinstance(amount, float):
        amount = str(amount)
    try:
        value = Decimal(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmount(f"Invalid amount: {amount!r}")
    if not value.is_finite() or value <= 0:
        raise InvalidAmount("Amount must be greater than zero")
    if value != value.quantize(KOBO):
        raise InvalidAmount("Amount cannot have more than two decimal places")
    return value.quantize(KOBO)


def to_kobo(amount) -> int:
    return int(parse_amount(amount) * 100)


def from_kobo(kobo: int) -> Decimal:
    return (Decimal(int(kobo)) / 100).quantize(KOBO)


# References

def generate_reference(prefix: str) -> str:
    """Unique per attempt; never reused, even when the same purchase is retried."""
    return f"{prefix.upper()}_{ObjectId()}_{int(time.time())}"


def refund_reference(original_reference: str) -> str:
    return f"REFUND-{original_reference}"


# Webhook signatures

def sign_payload(raw_body: bytes, secret: str) -> str:
    return hmac.new(key=secret.encode("utf-8"), msg=raw_body, digestmod=hashlib.sha256).hexdigest()


def signature_valid(raw_body: bytes, provided_sig: str, secret: str) -> bool:
    if not secret or not provided_sig:
        return False
    return hmac.compare_digest(sign_payload(raw_body, secret), provided_sig.strip().lower())
