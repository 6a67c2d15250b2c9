"""WalletLedger: the only way a user's wallet balance changes."""
import logging
import threading
from decimal import Decimal
from typing import Callable, Optional

from errors import InsufficientFunds
from models import BalanceChanged
from repositories import UserRepository
from utils import from_kobo, parse_amount


class WalletLedger:
    """Atomic debit and credit over a UserRepository, plus a change feed."""

    def __init__(self, users: UserRepository):
        self.users = users
        self._subscribers = []
        self._subscribers_lock = threading.Lock()

    def get_balance(self, user_id: str) -> Decimal:
        return from_kobo(self.users.get_balance_kobo(user_id))

    def debit(self, user_id: str, amount, reason: str = "debit", reference: Optional[str] = None) -> Decimal:
        amount = parse_amount(amount)
        kobo = int(amount * 100)
        new_kobo = self.users.debit_if_sufficient(user_id, kobo)
        if new_kobo is None:
            balance = self.get_balance(user_id)
            logging.info(f"Debit of {amount} refused for user {user_id}: balance {balance}")
            raise InsufficientFunds(balance=str(balance), amount=str(amount))

        new_balance = from_kobo(new_kobo)
        self._publish(user_id, new_balance + amount, new_balance, -amount, reason, reference)
        return new_balance

    def credit(self, user_id: str, amount, reason: str = "credit", reference: Optional[str] = None) -> Decimal:
        amount = parse_amount(amount)
        new_balance = from_kobo(self.users.credit(user_id, int(amount * 100)))
        self._publish(user_id, new_balance - amount, new_balance, amount, reason, reference)
        return new_balance

    def subscribe(self, callback: Callable[[BalanceChanged], None]) -> Callable[[], None]:
        """Register for BalanceChanged events; returns a function that unsubscribes."""
        with self._subscribers_lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._subscribers_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self, user_id, previous, new, delta, reason, reference):
        event = BalanceChanged(
            user_id=user_id,
            previous_balance=previous,
            new_balance=new,
            delta=delta,
            reason=reason,
            reference=reference,
        )
        logging.info(f"Balance changed for user {user_id}: {previous} -> {new} ({reason})")
        with self._subscribers_lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                # mutation already committed; listener errors never propagate
                logging.exception(f"Balance subscriber failed for user {user_id}")
