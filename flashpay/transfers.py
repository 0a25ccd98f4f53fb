"""
Transfer Processing Module

Validates and executes balance transfers between two accounts. Both balance
updates and the ledger entry are written in one atomic storage unit guarded by
compare-and-save on each account, so concurrent transfers that share an
account serialize without a global lock.
"""

from decimal import Decimal
from datetime import datetime, timezone
from typing import Callable, List, Optional
import uuid

from .accounts import Account, AccountStore
from .audit import AuditTrail, AuditEventType
from .currency import AmountLike, to_amount
from .exceptions import (
    AccountNotFound, ConcurrentUpdateConflict, FlashPayError, ForbiddenOperation,
    InsufficientBalance, InvalidAmount, InvalidOperation, StoreUnavailable
)
from .ledger import Transfer, TransactionStore
from .logging_config import get_logger, log_action
from .storage import StorageInterface


DEFAULT_MAX_RETRIES = 3


class TransferEngine:
    """
    Executes transfers with ordered precondition checks and an
    optimistic-retry commit
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_store: AccountStore,
        transaction_store: TransactionStore,
        audit_trail: Optional[AuditTrail] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.storage = storage
        self.account_store = account_store
        self.transaction_store = transaction_store
        self.audit_trail = audit_trail
        self.max_retries = max_retries
        self.clock = clock
        self.logger = get_logger("flashpay.transfers")

    def transfer(self, sender_id: str, receiver_id: str, amount: AmountLike) -> Transfer:
        """
        Move funds from sender to receiver

        Args:
            sender_id: Account debited; must not be a shopkeeper
            receiver_id: Account credited
            amount: Positive amount with at most 2 decimal places

        Returns:
            The persisted Transfer

        Raises:
            InvalidOperation: sender and receiver are the same account
            AccountNotFound: either account does not exist
            ForbiddenOperation: sender is a shopkeeper
            InvalidAmount: amount is not a positive 2-digit decimal
            InsufficientBalance: sender balance is below amount
            ConcurrentUpdateConflict: retries exhausted under contention
            StoreUnavailable: storage timed out or failed
        """
        try:
            for attempt in range(1, self.max_retries + 1):
                try:
                    return self._attempt_transfer(sender_id, receiver_id, amount)
                except ConcurrentUpdateConflict:
                    if attempt == self.max_retries:
                        raise
                    self.logger.info(
                        f"Concurrent update on transfer {sender_id} -> {receiver_id}, "
                        f"retrying ({attempt}/{self.max_retries})"
                    )
        except FlashPayError as e:
            self._record_rejection(sender_id, receiver_id, amount, e)
            raise

    def _attempt_transfer(self, sender_id: str, receiver_id: str, amount: AmountLike) -> Transfer:
        """Run one read-validate-commit cycle"""
        if sender_id == receiver_id:
            raise InvalidOperation("Sender and receiver must be different accounts")

        sender = self._get_account(sender_id)
        receiver = self._get_account(receiver_id)

        if not sender.can_send:
            raise ForbiddenOperation("Shopkeepers cannot send transfers", account_id=sender.id)

        value = to_amount(amount)
        if value <= Decimal('0'):
            raise InvalidAmount("Transfer amount must be greater than zero")

        if sender.balance < value:
            raise InsufficientBalance(
                f"Insufficient balance: available {sender.balance}, requested {value}",
                account_id=sender.id
            )

        sender.balance -= value
        receiver.balance += value

        transfer = Transfer(
            id=str(uuid.uuid4()),
            sender_id=sender.id,
            receiver_id=receiver.id,
            amount=value,
            timestamp=self.clock()
        )

        with self.storage.atomic():
            self.account_store.save(sender)
            self.account_store.save(receiver)
            self.transaction_store.save(transfer)

        log_action(
            self.logger, "info", "Transfer completed",
            user_id=sender.id, action="transfer", resource=f"transfer:{transfer.id}",
            extra={
                "transfer_id": transfer.id,
                "sender_id": sender.id,
                "receiver_id": receiver.id,
                "amount": str(value)
            }
        )

        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSFER_COMPLETED,
                entity_type="transfer",
                entity_id=transfer.id,
                metadata={
                    "sender_id": sender.id,
                    "receiver_id": receiver.id,
                    "amount": value,
                    "sender_balance": sender.balance,
                    "receiver_balance": receiver.balance
                },
                user_id=sender.id
            )

        return transfer

    def _get_account(self, account_id: str) -> Account:
        account = self.account_store.get_by_id(account_id)
        if not account:
            raise AccountNotFound(f"Account {account_id} not found", account_id=account_id)
        return account

    def _record_rejection(self, sender_id: str, receiver_id: str, amount: AmountLike,
                          error: FlashPayError) -> None:
        log_action(
            self.logger, "warning", f"Transfer rejected: {error.message}",
            user_id=sender_id, action="transfer_rejected", resource=f"account:{sender_id}",
            extra={
                "code": error.code,
                "sender_id": sender_id,
                "receiver_id": receiver_id,
                "amount": str(amount)
            }
        )

        # No audit write while the store is unavailable
        if self.audit_trail and not isinstance(error, StoreUnavailable):
            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSFER_REJECTED,
                entity_type="account",
                entity_id=sender_id,
                metadata={
                    "code": error.code,
                    "receiver_id": receiver_id,
                    "amount": str(amount),
                    "reason": error.message
                },
                user_id=sender_id
            )

    def get_transfer(self, transfer_id: str) -> Optional[Transfer]:
        """Get transfer by ID"""
        return self.transaction_store.get(transfer_id)

    def get_account_transfers(self, account_id: str, limit: Optional[int] = None) -> List[Transfer]:
        """Get transfers for an account, most recent first"""
        if not self.account_store.get_by_id(account_id):
            raise AccountNotFound(f"Account {account_id} not found", account_id=account_id)
        return self.transaction_store.find_by_account(account_id, limit=limit)
