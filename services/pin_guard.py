"""PinGuard: the transaction PIN that gates every money-moving request."""
import logging
import re
from datetime import datetime, timedelta, timezone

from errors import AccountLocked, InvalidPin, PinNotSet, Unauthenticated, UserNotFound
from models import AuditEntry
from repositories import AuditLogRepository, UserRepository
from utils import pin_context

PIN_PATTERN = re.compile(r"^\d{4}$")


def _utcnow():
    return datetime.now(timezone.utc)


def _aware(value):
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PinGuard:

    def __init__(self, users: UserRepository, audit_log: AuditLogRepository, max_attempts: int = 5,
                 lockout: timedelta = timedelta(minutes=15), crypt_context=None, clock=_utcnow):
        self.users = users
        self.audit_log = audit_log
        self.max_attempts = max_attempts
        self.lockout = lockout
        self.crypt_context = crypt_context or pin_context()
        self.clock = clock

    def _user(self, user_id):
        if not user_id:
            raise Unauthenticated()
        user = self.users.get(user_id)
        if user is None:
            raise UserNotFound(f"Unknown user id {user_id!r}")
        return user

    def _locked_until(self, user):
        locked_until = _aware(user.pin_locked_until)
        if locked_until and locked_until > self.clock():
            return locked_until
        return None

    def set_pin(self, user_id: str, new_pin: str, current_pin: str = None) -> None:
        if not PIN_PATTERN.match(new_pin or ""):
            raise InvalidPin("PIN must be exactly 4 digits")

        user = self._user(user_id)
        if user.has_pin:
            if not current_pin or not self.verify_pin(user_id, current_pin):
                raise InvalidPin("Current PIN is incorrect")

        self.users.set_pin_hash(user_id, self.crypt_context.hash(new_pin))
        logging.info(f"Transaction PIN {'changed' if user.has_pin else 'set'} for user {user_id}")

    def _lock(self, user_id):
        locked_until = self.clock() + self.lockout
        self.users.lock_pin(user_id, locked_until)
        logging.warning(f"Transaction PIN locked for user {user_id} until {locked_until.isoformat()}")
        return locked_until

    def verify_pin(self, user_id: str, pin: str) -> bool:
        """True on match. Locked accounts are refused before the PIN is looked at."""
        user = self._user(user_id)
        locked_until = self._locked_until(user)
        if locked_until:
            raise AccountLocked(locked_until)
        if not user.has_pin:
            raise PinNotSet()

        # Claimed before hashing: at most max_attempts checks run per lockout window
        attempt = self.users.claim_pin_attempt(user_id, self.max_attempts, self.clock())
        if attempt is None:
            locked_until = self._locked_until(self._user(user_id)) or self._lock(user_id)
            raise AccountLocked(locked_until)

        if pin and PIN_PATTERN.match(pin) and self.crypt_context.verify(pin, user.pin_hash):
            self.users.clear_pin_failures(user_id)
            return True

        if attempt >= self.max_attempts:
            self._lock(user_id)
        else:
            logging.info(f"Incorrect transaction PIN for user {user_id}")
        return False

    def authorize(self, user_id: str, pin: str) -> None:
        if not self.verify_pin(user_id, pin):
            raise InvalidPin()

    def pin_status(self, user_id: str) -> dict:
        user = self._user(user_id)
        locked_until = self._locked_until(user)
        return {
            "has_pin": user.has_pin,
            "is_locked": locked_until is not None,
            "locked_until": locked_until.isoformat() if locked_until else None,
            "remaining_attempts": 0 if locked_until else max(self.max_attempts - user.pin_failure_count, 0),
        }

    def reset_pin(self, user_id: str) -> None:
        self._user(user_id)
        self.users.set_pin_hash(user_id, None)
        logging.info(f"Transaction PIN reset by user {user_id}")

    def reset_pin_for_admin(self, user_id: str, admin_id: str) -> None:
        self._user(user_id)
        self.users.set_pin_hash(user_id, None)
        self.audit_log.add(AuditEntry(
            actor_id=admin_id,
            action="reset_user_pin",
            target_user_id=user_id,
            details={"timestamp": self.clock().isoformat()},
        ))
        logging.info(f"Transaction PIN for user {user_id} reset by admin {admin_id}")
