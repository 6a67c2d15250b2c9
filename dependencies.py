"""Builds the repositories and services once per process and hands them to routes."""
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache

from config import settings
from memory_store import (
    InMemoryAuditLogRepository, InMemorySettingsRepository, InMemoryTransactionRepository, InMemoryUserRepository,
)
from repositories import AuditLogRepository, SettingsRepository, TransactionRepository, UserRepository
from services.ledger import WalletLedger
from services.pin_guard import PinGuard
from services.pricing import PlanPricing
from services.providers import ProviderClient
from services.settlement import SettlementEngine


@dataclass
class Services:
    users: UserRepository
    transactions: TransactionRepository
    audit_log: AuditLogRepository
    api_settings: SettingsRepository
    ledger: WalletLedger
    providers: ProviderClient
    pin_guard: PinGuard
    pricing: PlanPricing
    engine: SettlementEngine


def build_services(users, transactions, audit_log, api_settings, providers=None, pin_guard=None) -> Services:
    ledger = WalletLedger(users)
    providers = providers or ProviderClient(api_settings, timeout=settings.PROVIDER_TIMEOUT_SECONDS)
    pin_guard = pin_guard or PinGuard(
        users,
        audit_log,
        max_attempts=settings.PIN_MAX_ATTEMPTS,
        lockout=timedelta(minutes=settings.PIN_LOCKOUT_MINUTES),
    )
    return Services(
        users=users,
        transactions=transactions,
        audit_log=audit_log,
        api_settings=api_settings,
        ledger=ledger,
        providers=providers,
        pin_guard=pin_guard,
        pricing=PlanPricing(api_settings),
        engine=SettlementEngine(ledger, transactions, providers, audit_log),
    )


def build_memory_services(**kwargs) -> Services:
    return build_services(
        InMemoryUserRepository(),
        InMemoryTransactionRepository(),
        InMemoryAuditLogRepository(),
        InMemorySettingsRepository(),
        **kwargs,
    )


def build_mongo_services() -> Services:
    # Imported here so that memory-backed runs never open a Mongo connection
    import database
    from repositories import (
        MongoAuditLogRepository, MongoSettingsRepository, MongoTransactionRepository, MongoUserRepository,
    )

    return build_services(
        MongoUserRepository(database.users),
        MongoTransactionRepository(database.transactions),
        MongoAuditLogRepository(database.admin_logs),
        MongoSettingsRepository(database.api_settings),
    )


@lru_cache
def get_services() -> Services:
    if settings.STORAGE_BACKEND == "memory":
        return build_memory_services()
    return build_mongo_services()
