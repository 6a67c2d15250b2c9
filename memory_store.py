"""In-process repositories for STORAGE_BACKEND=memory and the tests."""
import threading
from copy import deepcopy

from bson import ObjectId

from errors import DuplicateReference, UserNotFound
from models import User
from repositories import AuditLogRepository, SettingsRepository, TransactionRepository, UserRepository
from utils import from_kobo


class InMemoryUserRepository(UserRepository):

    def __init__(self):
        self._lock = threading.RLock()
        self._docs = {}

    def _doc(self, user_id):
        doc = self._docs.get(user_id)
        if doc is None:
            raise UserNotFound(f"Unknown user id {user_id!r}")
        return doc

    def _user(self, doc):
        return User(
            id=doc["id"],
            name=doc["name"],
            email=doc["email"],
            phone=doc["phone"],
            wallet_balance=from_kobo(doc["wallet_balance_kobo"]),
            has_pin=bool(doc["transaction_pin"]),
            pin_hash=doc["transaction_pin"],
            pin_failure_count=doc["pin_failure_count"],
            pin_locked_until=doc["pin_locked_until"],
            is_admin=doc["is_admin"],
        )

    def get(self, user_id):
        with self._lock:
            doc = self._docs.get(user_id)
            return self._user(doc) if doc else None

    def get_by_email(self, email):
        email = email.strip().lower()
        with self._lock:
            for doc in self._docs.values():
                if doc["email"] == email:
                    return self._user(doc)
        return None

    def get_password_hash(self, user_id):
        with self._lock:
            return self._doc(user_id)["password"]

    def create(self, name, email, phone, password_hash, is_admin=False, wallet_balance_kobo=0):
        user_id = str(ObjectId())
        with self._lock:
            self._docs[user_id] = {
                "id": user_id,
                "name": name,
                "email": email.strip().lower(),
                "phone": phone,
                "password": password_hash,
                "wallet_balance_kobo": wallet_balance_kobo,
                "transaction_pin": None,
                "pin_failure_count": 0,
                "pin_locked_until": None,
                "is_admin": is_admin,
            }
            return self._user(self._docs[user_id])

    def get_balance_kobo(self, user_id):
        with self._lock:
            return self._doc(user_id)["wallet_balance_kobo"]

    def debit_if_sufficient(self, user_id, kobo):
        with self._lock:
            doc = self._doc(user_id)
            if doc["wallet_balance_kobo"] < kobo:
                return None
            doc["wallet_balance_kobo"] -= kobo
            return doc["wallet_balance_kobo"]

    def credit(self, user_id, kobo):
        with self._lock:
            doc = self._doc(user_id)
            doc["wallet_balance_kobo"] += kobo
            return doc["wallet_balance_kobo"]

    def set_pin_hash(self, user_id, pin_hash):
        with self._lock:
            doc = self._doc(user_id)
            doc.update(transaction_pin=pin_hash, pin_failure_count=0, pin_locked_until=None)

    def claim_pin_attempt(self, user_id, max_attempts, now):
        with self._lock:
            doc = self._doc(user_id)
            locked_until = doc["pin_locked_until"]
            if locked_until and locked_until > now:
                return None
            if doc["pin_failure_count"] >= max_attempts:
                return None
            doc["pin_failure_count"] += 1
            return doc["pin_failure_count"]

    def lock_pin(self, user_id, locked_until):
        with self._lock:
            self._doc(user_id).update(pin_failure_count=0, pin_locked_until=locked_until)

    def clear_pin_failures(self, user_id):
        with self._lock:
            self._doc(user_id).update(pin_failure_count=0, pin_locked_until=None)


class InMemoryTransactionRepository(TransactionRepository):

    def __init__(self):
        self._lock = threading.RLock()
        self._records = {}

    def insert(self, record):
        with self._lock:
            if record.reference in self._records:
                raise DuplicateReference(f"Reference {record.reference} already exists", reference=record.reference)
            self._records[record.reference] = record.model_copy(deep=True)
        return record

    def get_by_reference(self, reference):
        with self._lock:
            record = self._records.get(reference)
            return record.model_copy(deep=True) if record else None

    def all(self):
        with self._lock:
            return [record.model_copy(deep=True) for record in self._records.values()]

    @staticmethod
    def _newest_first(records, limit):
        records = sorted(records, key=lambda r: r.created_at, reverse=True)
        # limit=0 means no limit, as with a Mongo cursor
        return records[:limit] if limit else records

    def list_for_user(self, user_id, limit=50):
        return self._newest_first([r for r in self.all() if r.user_id == user_id], limit)

    def list_reconciliation_required(self, limit=50):
        return self._newest_first([r for r in self.all() if r.reconciliation_required], limit)

    def settle(self, reference, status, details):
        with self._lock:
            record = self._records.get(reference)
            if record is None or record.is_terminal:
                return None
            merged = {**record.details, **deepcopy(details)}
            self._records[reference] = record.model_copy(update={"status": status, "details": merged})
            return self._records[reference].model_copy(deep=True)


class InMemoryAuditLogRepository(AuditLogRepository):

    def __init__(self):
        self._lock = threading.Lock()
        self._entries = []

    def add(self, entry):
        with self._lock:
            self._entries.append(entry)
        return entry

    def list(self, limit=50, action=None):
        with self._lock:
            entries = [e for e in self._entries if action is None or e.action == action]
        return list(reversed(entries))[:limit]


class InMemorySettingsRepository(SettingsRepository):

    def __init__(self, initial=None):
        self._lock = threading.Lock()
        self._values = dict(initial or {})

    def get_many(self, keys):
        with self._lock:
            return {key: self._values[key] for key in keys if key in self._values}

    def set(self, key, value):
        with self._lock:
            self._values[key] = value
