"""SettlementEngine: spend wallet balance on a provider service.

Purchase order: reference, funds check, provider call, debit, record.
Webhook failures refund exactly once through a compare-and-set on the record.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import NamedTuple, Optional

from bson import ObjectId

from errors import (
    ConfigurationError, DuplicateReference, InsufficientFunds, ProviderError, ReconciliationRequired,
    ServiceError, TransactionNotFound, Unauthenticated,
)
from models import AuditEntry, PURCHASE_TYPES, TransactionRecord, TransactionStatus, TransactionType
from repositories import AuditLogRepository, TransactionRepository
from services.ledger import WalletLedger
from services.providers import ProviderClient
from utils import generate_reference, parse_amount, refund_reference

SYSTEM_ACTOR = None


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


class SettlementResult(NamedTuple):
    record: TransactionRecord
    refund: Optional[TransactionRecord]
    applied: bool


class SettlementEngine:

    def __init__(self, ledger: WalletLedger, transactions: TransactionRepository,
                 providers: ProviderClient, audit_log: AuditLogRepository):
        self.ledger = ledger
        self.transactions = transactions
        self.providers = providers
        self.audit_log = audit_log
        self._dispatch = {
            TransactionType.AIRTIME: providers.buy_airtime,
            TransactionType.DATA: providers.buy_data,
            TransactionType.ELECTRICITY: providers.buy_electricity,
            TransactionType.CABLE: providers.buy_cable,
        }

    def _record(self, user_id, kind, amount, status, reference, details) -> TransactionRecord:
        record = TransactionRecord(
            id=str(ObjectId()),
            user_id=user_id,
            type=kind,
            amount=amount,
            status=status,
            reference=reference,
            details=details,
        )
        return self.transactions.insert(record)

    def purchase(self, user_id: str, kind: TransactionType, request, amount) -> TransactionRecord:
        if not user_id:
            raise Unauthenticated()
        kind = TransactionType(kind)
        if kind not in PURCHASE_TYPES:
            raise ValueError(f"{kind.value} is not a purchasable service")
        amount = parse_amount(amount)

        # Assigned before the provider is contacted so failed attempts stay traceable
        reference = generate_reference(kind.value)

        balance = self.ledger.get_balance(user_id)
        if balance < amount:
            logging.info(f"{reference}: insufficient funds for user {user_id} ({balance} < {amount})")
            raise InsufficientFunds(balance=str(balance), amount=str(amount))

        details = {
            "request": request.model_dump(mode="json"),
            "initiated_at": _now_iso(),
        }

        try:
            response = self._dispatch[kind](request)
        except ProviderError as e:
            logging.error(f"{reference}: {kind.value} purchase failed for user {user_id}: {e.code} - {e}")
            details.update(
                failure_code=e.code,
                failure_reason=str(e),
                provider_error=e.details,
                debited=False,
                failed_at=_now_iso(),
            )
            record = self._record(user_id, kind, amount, TransactionStatus.FAILED, reference, details)
            if isinstance(e, ConfigurationError):
                raise
            return record

        details.update(
            provider=response.raw.get("provider"),
            provider_reference=response.provider_reference,
            provider_response=response.raw,
        )

        try:
            self.ledger.debit(user_id, amount, reason=f"{kind.value} purchase", reference=reference)
            details["debited"] = True
        except ServiceError as e:
            flag = ReconciliationRequired(reference, e)
            logging.error(f"{reference}: {flag}")
            details.update(
                debited=False,
                reconciliation_required=True,
                reconciliation_reason=str(flag),
            )
            self.audit_log.add(AuditEntry(
                actor_id=SYSTEM_ACTOR,
                action=flag.code,
                target_user_id=user_id,
                details={"reference": reference, "amount": str(amount), "cause": flag.details["cause"]},
            ))

        status = response.status
        if status == TransactionStatus.SUCCESS:
            details["completed_at"] = _now_iso()
        record = self._record(user_id, kind, amount, status, reference, details)
        logging.info(f"{reference}: {kind.value} purchase {status.value} for user {user_id}, amount {amount}")
        return record

    def handle_async_settlement(self, reference: str, outcome: TransactionStatus,
                                provider_payload: dict, record_types=None) -> SettlementResult:
        outcome = TransactionStatus(outcome)
        if outcome == TransactionStatus.PENDING:
            raise ValueError("Settlement outcome must be success or failed")

        record = self.transactions.get_by_reference(reference)
        if record is None or (record_types is not None and record.type not in record_types):
            raise TransactionNotFound(f"No transaction with reference {reference}", reference=reference)

        if record.is_terminal:
            logging.info(f"{reference}: already settled as {record.status.value}, ignoring {outcome.value}")
            return SettlementResult(record, None, False)

        patch = {"webhook_data": provider_payload}
        if outcome == TransactionStatus.SUCCESS:
            patch["completed_at"] = _now_iso()
            if record.type == TransactionType.WALLET_FUNDING:
                patch["credited"] = True
        else:
            patch["failure_reason"] = (provider_payload.get("data") or {}).get("reason") or "Unknown failure reason"
            patch["failed_at"] = _now_iso()

        updated = self.transactions.settle(reference, outcome, patch)
        if updated is None:
            # Lost the race to a concurrent delivery of the same webhook
            logging.info(f"{reference}: settled concurrently, ignoring {outcome.value}")
            return SettlementResult(self.transactions.get_by_reference(reference), None, False)

        if updated.details.get("credited"):
            self.ledger.credit(updated.user_id, updated.amount, reason="wallet funding", reference=reference)
            logging.info(f"{reference}: deposit of {updated.amount} credited to user {updated.user_id}")

        refund = None
        if (outcome == TransactionStatus.FAILED
                and updated.type not in (TransactionType.WALLET_FUNDING, TransactionType.REFUND)
                and updated.details.get("debited")):
            refund = self._refund(updated)

        self.audit_log.add(AuditEntry(
            actor_id=SYSTEM_ACTOR,
            action="provider_webhook",
            target_user_id=updated.user_id,
            details={
                "event": provider_payload.get("event"),
                "transaction_id": updated.id,
                "reference": reference,
                "status": outcome.value,
                "refund_reference": refund.reference if refund else None,
            },
        ))
        return SettlementResult(updated, refund, True)

    def _refund(self, original: TransactionRecord) -> Optional[TransactionRecord]:
        reference = refund_reference(original.reference)
        if self.transactions.get_by_reference(reference) is not None:
            logging.warning(f"{original.reference}: refund {reference} already exists")
            return None

        self.ledger.credit(original.user_id, original.amount, reason="refund", reference=reference)
        try:
            refund = self._record(
                original.user_id,
                TransactionType.REFUND,
                original.amount,
                TransactionStatus.SUCCESS,
                reference,
                {
                    "original_transaction_id": original.id,
                    "original_reference": original.reference,
                    "reason": "Failed transaction refund",
                    "refunded_at": _now_iso(),
                    "credited": True,
                },
            )
        except DuplicateReference:
            logging.error(f"{original.reference}: duplicate refund record {reference}, wallet needs review")
            raise
        logging.info(f"{original.reference}: refunded {original.amount} to user {original.user_id}")
        return refund

    def fund_wallet(self, user_id: str, amount, actor_id: Optional[str] = None,
                    note: str = "Manual wallet funding") -> TransactionRecord:
        if not user_id:
            raise Unauthenticated()
        amount = parse_amount(amount)
        reference = generate_reference(TransactionType.WALLET_FUNDING.value)
        new_balance = self.ledger.credit(user_id, amount, reason="wallet funding", reference=reference)
        record = self._record(
            user_id,
            TransactionType.WALLET_FUNDING,
            amount,
            TransactionStatus.SUCCESS,
            reference,
            {"note": note, "funded_by": actor_id, "completed_at": _now_iso(), "credited": True},
        )
        self.audit_log.add(AuditEntry(
            actor_id=actor_id,
            action="fund_wallet",
            target_user_id=user_id,
            details={"reference": reference, "amount": str(amount), "new_balance": str(new_balance)},
        ))
        return record

    def initiate_funding(self, user_id: str, amount) -> TransactionRecord:
        """Pending deposit; the wallet is credited when the deposit webhook reports it paid."""
        if not user_id:
            raise Unauthenticated()
        amount = parse_amount(amount)
        self.ledger.get_balance(user_id)
        reference = generate_reference(TransactionType.WALLET_FUNDING.value)
        record = self._record(
            user_id,
            TransactionType.WALLET_FUNDING,
            amount,
            TransactionStatus.PENDING,
            reference,
            {"channel": "deposit", "initiated_at": _now_iso()},
        )
        logging.info(f"{reference}: deposit of {amount} initiated by user {user_id}")
        return record

    def balance_summary(self, user_id: str) -> dict:
        """Debits and credits reconstructed from the record log, next to the live balance."""
        if not user_id:
            raise Unauthenticated()
        credits = Decimal("0.00")
        debits = Decimal("0.00")
        for record in self.transactions.list_for_user(user_id, limit=0):
            if record.type in (TransactionType.WALLET_FUNDING, TransactionType.REFUND):
                if record.status == TransactionStatus.SUCCESS:
                    credits += record.amount
            elif record.details.get("debited"):
                debits += record.amount
        return {"credits": credits, "debits": debits, "balance": self.ledger.get_balance(user_id)}
