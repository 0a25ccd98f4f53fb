"""
Transfer Ledger Module

Append-only ledger of completed transfers. A Transfer is written exactly once,
in the same atomic unit as the two balance updates it explains, and is never
updated or deleted afterwards.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .exceptions import InvalidOperation
from .storage import StorageInterface


@dataclass(frozen=True)
class Transfer:
    """Immutable ledger entry for one completed transfer"""
    id: str
    sender_id: str
    receiver_id: str
    amount: Decimal
    timestamp: datetime

    def involves(self, account_id: str) -> bool:
        return account_id in (self.sender_id, self.receiver_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'sender_id': self.sender_id,
            'receiver_id': self.receiver_id,
            'amount': str(self.amount),
            'timestamp': self.timestamp.isoformat()
        }


class TransactionStore:
    """
    Append-only persistence for Transfer records

    Only ``save`` writes; there is no update or delete.
    """

    def __init__(self, storage: StorageInterface, table_name: str = "transfers"):
        self.storage = storage
        self.table_name = table_name

    def save(self, transfer: Transfer) -> Transfer:
        """
        Append a transfer to the ledger

        Raises:
            InvalidOperation: If a transfer with the same ID already exists
        """
        if self.storage.exists(self.table_name, transfer.id):
            raise InvalidOperation(f"Ledger entry {transfer.id} already exists")
        # Insert-only write; a concurrent duplicate surfaces as a conflict at commit
        self.storage.compare_and_save(self.table_name, transfer.id, transfer.to_dict(), None)
        return transfer

    def get(self, transfer_id: str) -> Optional[Transfer]:
        """Get transfer by ID"""
        data = self.storage.load(self.table_name, transfer_id)
        if data:
            return self._transfer_from_dict(data)
        return None

    def find_by_account(self, account_id: str, limit: Optional[int] = None) -> List[Transfer]:
        """
        Get transfers sent or received by an account, most recent first

        Args:
            account_id: Account ID
            limit: Optional limit on number of transfers

        Returns:
            List of Transfer objects
        """
        transfers = [
            self._transfer_from_dict(data)
            for data in self.storage.load_all(self.table_name)
            if account_id in (data['sender_id'], data['receiver_id'])
        ]
        transfers.sort(key=lambda t: t.timestamp, reverse=True)
        if limit:
            transfers = transfers[:limit]
        return transfers

    def count(self) -> int:
        return self.storage.count(self.table_name)

    def _transfer_from_dict(self, data: Dict[str, Any]) -> Transfer:
        return Transfer(
            id=data['id'],
            sender_id=data['sender_id'],
            receiver_id=data['receiver_id'],
            amount=Decimal(data['amount']),
            timestamp=datetime.fromisoformat(data['timestamp'])
        )
