"""Storage interfaces and their MongoDB implementation. Amounts are integer kobo."""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from errors import DuplicateReference, UserNotFound
from models import AuditEntry, TransactionRecord, TransactionStatus, User
from utils import from_kobo, to_kobo


class UserRepository(ABC):

    @abstractmethod
    def get(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    def get_by_email(self, email: str) -> Optional[User]: ...

    @abstractmethod
    def get_password_hash(self, user_id: str) -> Optional[str]: ...

    @abstractmethod
    def create(self, name: str, email: str, phone: str, password_hash: str, is_admin: bool = False) -> User: ...

    @abstractmethod
    def get_balance_kobo(self, user_id: str) -> int: ...

    @abstractmethod
    def debit_if_sufficient(self, user_id: str, kobo: int) -> Optional[int]: ...

    @abstractmethod
    def credit(self, user_id: str, kobo: int) -> int: ...

    @abstractmethod
    def set_pin_hash(self, user_id: str, pin_hash: Optional[str]) -> None: ...

    @abstractmethod
    def claim_pin_attempt(self, user_id: str, max_attempts: int, now: datetime) -> Optional[int]:
        """Count an attempt unless locked or max_attempts are already counted; the attempt number, or None."""

    @abstractmethod
    def lock_pin(self, user_id: str, locked_until: datetime) -> None: ...

    @abstractmethod
    def clear_pin_failures(self, user_id: str) -> None: ...


class TransactionRepository(ABC):

    @abstractmethod
    def insert(self, record: TransactionRecord) -> TransactionRecord: ...

    @abstractmethod
    def get_by_reference(self, reference: str) -> Optional[TransactionRecord]: ...

    @abstractmethod
    def list_for_user(self, user_id: str, limit: int = 50) -> List[TransactionRecord]: ...

    @abstractmethod
    def list_reconciliation_required(self, limit: int = 50) -> List[TransactionRecord]: ...

    @abstractmethod
    def settle(self, reference: str, status: TransactionStatus, details: dict) -> Optional[TransactionRecord]:
        """None when the record was already terminal."""


class AuditLogRepository(ABC):

    @abstractmethod
    def add(self, entry: AuditEntry) -> AuditEntry: ...

    @abstractmethod
    def list(self, limit: int = 50, action: Optional[str] = None) -> List[AuditEntry]: ...


class SettingsRepository(ABC):

    @abstractmethod
    def get_many(self, keys: Iterable[str]) -> Dict[str, str]: ...

    @abstractmethod
    def set(self, key: str, value: str) -> None: ...

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.get_many([key]).get(key, default)


# --- MongoDB ---

def _oid(user_id: str) -> ObjectId:
    # ObjectId(None) would mint a fresh id
    if not user_id:
        raise UserNotFound("Missing user id")
    try:
        return ObjectId(user_id)
    except (InvalidId, TypeError):
        raise UserNotFound(f"Unknown user id {user_id!r}")


def _user_from_doc(doc) -> User:
    return User(
        id=str(doc["_id"]),
        name=doc["name"],
        email=doc["email"],
        phone=doc.get("phone"),
        wallet_balance=from_kobo(doc.get("wallet_balance_kobo", 0)),
        has_pin=bool(doc.get("transaction_pin")),
        pin_hash=doc.get("transaction_pin"),
        pin_failure_count=doc.get("pin_failure_count", 0),
        pin_locked_until=doc.get("pin_locked_until"),
        is_admin=doc.get("is_admin", False),
    )


def _record_to_doc(record: TransactionRecord) -> dict:
    return {
        "_id": ObjectId(record.id) if ObjectId.is_valid(record.id) else record.id,
        "user_id": record.user_id,
        "type": record.type.value,
        "amount_kobo": to_kobo(record.amount),
        "status": record.status.value,
        "reference": record.reference,
        "details": record.details,
        "created_at": record.created_at,
    }


def _record_from_doc(doc) -> TransactionRecord:
    return TransactionRecord(
        id=str(doc["_id"]),
        user_id=doc["user_id"],
        type=doc["type"],
        amount=from_kobo(doc["amount_kobo"]),
        status=doc["status"],
        reference=doc["reference"],
        details=doc.get("details") or {},
        created_at=doc["created_at"],
    )


class MongoUserRepository(UserRepository):

    def __init__(self, users):
        self.users = users

    def _find(self, user_id: str):
        doc = self.users.find_one({"_id": _oid(user_id)})
        if not doc:
            raise UserNotFound(f"Unknown user id {user_id!r}")
        return doc

    def get(self, user_id):
        try:
            return _user_from_doc(self._find(user_id))
        except UserNotFound:
            return None

    def get_by_email(self, email):
        doc = self.users.find_one({"email": email.strip().lower()})
        return _user_from_doc(doc) if doc else None

    def get_password_hash(self, user_id):
        return self._find(user_id).get("password")

    def create(self, name, email, phone, password_hash, is_admin=False):
        doc = {
            "name": name,
            "email": email.strip().lower(),
            "phone": phone,
            "password": password_hash,
            "wallet_balance_kobo": 0,
            "transaction_pin": None,
            "pin_failure_count": 0,
            "pin_locked_until": None,
            "is_admin": is_admin,
        }
        result = self.users.insert_one(doc)
        doc["_id"] = result.inserted_id
        return _user_from_doc(doc)

    def get_balance_kobo(self, user_id):
        return int(self._find(user_id).get("wallet_balance_kobo", 0))

    def debit_if_sufficient(self, user_id, kobo):
        doc = self.users.find_one_and_update(
            {"_id": _oid(user_id), "wallet_balance_kobo": {"$gte": kobo}},
            {"$inc": {"wallet_balance_kobo": -kobo}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            self._find(user_id)
            return None
        return int(doc["wallet_balance_kobo"])

    def credit(self, user_id, kobo):
        doc = self.users.find_one_and_update(
            {"_id": _oid(user_id)},
            {"$inc": {"wallet_balance_kobo": kobo}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise UserNotFound(f"Unknown user id {user_id!r}")
        return int(doc["wallet_balance_kobo"])

    def set_pin_hash(self, user_id, pin_hash):
        result = self.users.update_one(
            {"_id": _oid(user_id)},
            {"$set": {"transaction_pin": pin_hash, "pin_failure_count": 0, "pin_locked_until": None}},
        )
        if result.matched_count == 0:
            raise UserNotFound(f"Unknown user id {user_id!r}")

    def claim_pin_attempt(self, user_id, max_attempts, now):
        doc = self.users.find_one_and_update(
            {
                "_id": _oid(user_id),
                "pin_failure_count": {"$lt": max_attempts},
                "$or": [{"pin_locked_until": None}, {"pin_locked_until": {"$lte": now}}],
            },
            {"$inc": {"pin_failure_count": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            self._find(user_id)
            return None
        return doc["pin_failure_count"]

    def lock_pin(self, user_id, locked_until):
        self.users.update_one(
            {"_id": _oid(user_id)},
            {"$set": {"pin_failure_count": 0, "pin_locked_until": locked_until}},
        )

    def clear_pin_failures(self, user_id):
        self.users.update_one(
            {"_id": _oid(user_id)},
            {"$set": {"pin_failure_count": 0, "pin_locked_until": None}},
        )


class MongoTransactionRepository(TransactionRepository):

    def __init__(self, transactions):
        self.transactions = transactions

    def insert(self, record):
        try:
            self.transactions.insert_one(_record_to_doc(record))
        except DuplicateKeyError:
            raise DuplicateReference(f"Reference {record.reference} already exists", reference=record.reference)
        return record

    def get_by_reference(self, reference):
        doc = self.transactions.find_one({"reference": reference})
        return _record_from_doc(doc) if doc else None

    def list_for_user(self, user_id, limit=50):
        cursor = self.transactions.find({"user_id": user_id}).sort("created_at", DESCENDING).limit(limit)
        return [_record_from_doc(doc) for doc in cursor]

    def list_reconciliation_required(self, limit=50):
        cursor = (
            self.transactions.find({"details.reconciliation_required": True})
            .sort("created_at", DESCENDING)
            .limit(limit)
        )
        return [_record_from_doc(doc) for doc in cursor]

    def settle(self, reference, status, details):
        update = {"status": status.value}
        update.update({f"details.{key}": value for key, value in details.items()})
        doc = self.transactions.find_one_and_update(
            {
                "reference": reference,
                "status": {"$ne": TransactionStatus.FAILED.value},
                "details.webhook_data": {"$exists": False},
                "details.credited": {"$ne": True},
            },
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
        return _record_from_doc(doc) if doc else None


class MongoAuditLogRepository(AuditLogRepository):

    def __init__(self, admin_logs):
        self.admin_logs = admin_logs

    def add(self, entry):
        self.admin_logs.insert_one(entry.model_dump())
        return entry

    def list(self, limit=50, action=None):
        query = {"action": action} if action else {}
        cursor = self.admin_logs.find(query, {"_id": 0}).sort("timestamp", DESCENDING).limit(limit)
        return [AuditEntry(**doc) for doc in cursor]


class MongoSettingsRepository(SettingsRepository):

    def __init__(self, api_settings):
        self.api_settings = api_settings

    def get_many(self, keys):
        cursor = self.api_settings.find({"key_name": {"$in": list(keys)}})
        return {doc["key_name"]: doc.get("key_value") for doc in cursor}

    def set(self, key, value):
        self.api_settings.update_one({"key_name": key}, {"$set": {"key_value": value}}, upsert=True)


def ensure_indexes(db):
    db["users"].create_index([("email", ASCENDING)], unique=True)
    db["transactions"].create_index([("reference", ASCENDING)], unique=True)
    db["transactions"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db["admin_logs"].create_index([("timestamp", DESCENDING)])
    db["api_settings"].create_index([("key_name", ASCENDING)], unique=True)
