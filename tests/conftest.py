"""
Shared fixtures: in-memory repositories, a mocked ProviderClient, a PIN guard
with a controllable clock, and an authenticated TestClient.
"""
import os

os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from dependencies import build_memory_services, get_services
from main import app
from models import ProviderResponse, TransactionStatus
from services.pin_guard import PinGuard
from services.providers import ProviderClient
from utils import create_access_token, hash_password, pin_context

PASSWORD = "correct-horse"
PASSWORD_HASH = hash_password(PASSWORD)
PIN = "1234"
WEBHOOK_SECRET = "whsec_test_secret"
DEPOSIT_SECRET = "whsec_deposit_secret"


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def provider_success(provider_reference="VTU-1001", status=TransactionStatus.SUCCESS):
    return ProviderResponse(
        success=True,
        status=status,
        provider_reference=provider_reference,
        message="Transaction successful",
        raw={"id": provider_reference, "Status": "successful", "provider": "naijadatasub"},
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def providers():
    mock = MagicMock(spec=ProviderClient)
    for operation in ("buy_airtime", "buy_data", "buy_electricity", "buy_cable"):
        getattr(mock, operation).return_value = provider_success()
    return mock


@pytest.fixture
def services(providers, clock):
    services = build_memory_services(providers=providers)
    services.pin_guard = PinGuard(
        services.users,
        services.audit_log,
        max_attempts=5,
        lockout=timedelta(minutes=15),
        crypt_context=pin_context(rounds=4),
        clock=clock,
    )
    services.api_settings.set("naijadatasub_webhook_secret", WEBHOOK_SECRET)
    services.api_settings.set("deposit_webhook_secret", DEPOSIT_SECRET)
    return services


def make_user(services, email="ada@example.com", balance_kobo=500000, is_admin=False, pin=None):
    user = services.users.create(
        name=email.split("@")[0].title(),
        email=email,
        phone="08030000000",
        password_hash=PASSWORD_HASH,
        is_admin=is_admin,
        wallet_balance_kobo=balance_kobo,
    )
    if pin:
        services.pin_guard.set_pin(user.id, pin)
    return services.users.get(user.id)


@pytest.fixture
def user(services):
    """A customer with NGN 5,000 in the wallet and no PIN yet."""
    return make_user(services)


@pytest.fixture
def user_with_pin(services):
    return make_user(services, email="bola@example.com", pin=PIN)


@pytest.fixture
def admin(services):
    return make_user(services, email="admin@example.com", balance_kobo=0, is_admin=True)


@pytest.fixture
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token({'user_id': user.id})}"}
