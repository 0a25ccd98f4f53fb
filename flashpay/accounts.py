"""
Account Management Module

Account records and the Account Store. An account holds a non-negative
Decimal balance and a role; shopkeeper accounts may receive funds but
never send them.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum

from .currency import to_amount
from .exceptions import ConcurrentUpdateConflict, DuplicateResource, InvalidAmount
from .storage import StorageInterface, StorageRecord


class AccountRole(Enum):
    """Account roles"""
    ORDINARY = "ORDINARY"
    SHOPKEEPER = "SHOPKEEPER"


@dataclass
class Account(StorageRecord):
    """
    Account holding a balance. Identity fields are immutable once created;
    only the transfer engine changes ``balance``.
    """
    first_name: str
    last_name: str
    document: str
    email: str
    balance: Decimal
    role: AccountRole
    password_hash: Optional[str] = None
    password_salt: Optional[str] = None
    version: int = 0  # 0 until first persisted

    def __post_init__(self):
        self.balance = to_amount(self.balance)
        if self.balance < Decimal('0'):
            raise InvalidAmount("Account balance cannot be negative")

    @property
    def can_send(self) -> bool:
        """Check if account may act as a transfer sender"""
        return self.role != AccountRole.SHOPKEEPER

    @property
    def authorities(self) -> List[str]:
        return [f"ROLE_{self.role.value}"]


class AccountStore:
    """
    Persistence for Account records

    ``save`` is a compare-and-save against ``account.version``: it fails with
    ConcurrentUpdateConflict if the stored record changed since it was read.
    """

    def __init__(self, storage: StorageInterface, table_name: str = "accounts"):
        self.storage = storage
        self.table_name = table_name
        self.email_table = f"{table_name}_by_email"
        self.document_table = f"{table_name}_by_document"

    def get_by_id(self, account_id: str) -> Optional[Account]:
        """Get account by ID"""
        data = self.storage.load(self.table_name, account_id)
        if data:
            return self._account_from_dict(data)
        return None

    def get_by_email(self, email: str) -> Optional[Account]:
        """Get account by unique email"""
        return self._find_one({"email": email.strip().lower()})

    def get_by_document(self, document: str) -> Optional[Account]:
        """Get account by unique document number"""
        return self._find_one({"document": document.strip()})

    def save(self, account: Account) -> Account:
        """
        Compare-and-save an account

        Args:
            account: Account as read (or freshly created with version 0)

        Returns:
            The same account with ``version`` advanced

        Raises:
            ConcurrentUpdateConflict: If the stored version no longer matches
        """
        expected_version = account.version if account.version > 0 else None
        account.updated_at = datetime.now(timezone.utc)
        account.version = self.storage.compare_and_save(
            self.table_name, account.id, self._account_to_dict(account), expected_version
        )
        return account

    def create(self, account: Account) -> Account:
        """
        Insert a new account and claim its email and document

        The claims are insert-only records keyed by the normalized email and
        document, written in the same atomic unit as the account, so two
        registrations of one identity can never both commit.

        Raises:
            DuplicateResource: If the email or document is already claimed
        """
        account.updated_at = datetime.now(timezone.utc)
        claim = {"account_id": account.id}
        try:
            with self.storage.atomic():
                self.storage.compare_and_save(self.email_table, account.email, claim, None)
                self.storage.compare_and_save(self.document_table, account.document, claim, None)
                account.version = self.storage.compare_and_save(
                    self.table_name, account.id, self._account_to_dict(account), None
                )
        except ConcurrentUpdateConflict as e:
            claimed = e.details.get("table")
            if claimed == self.email_table:
                raise DuplicateResource("Email already registered", field="email") from e
            if claimed == self.document_table:
                raise DuplicateResource("Document already registered", field="document") from e
            raise
        return account

    def list_accounts(self) -> List[Account]:
        """List all accounts"""
        return [self._account_from_dict(data) for data in self.storage.load_all(self.table_name)]

    def total_balance(self) -> Decimal:
        """Sum of every account balance"""
        return sum((account.balance for account in self.list_accounts()), Decimal('0.00'))

    def _find_one(self, filters: Dict[str, Any]) -> Optional[Account]:
        results = self.storage.find(self.table_name, filters)
        if results:
            return self._account_from_dict(results[0])
        return None

    def _account_to_dict(self, account: Account) -> Dict[str, Any]:
        result = account.to_dict()
        result['role'] = account.role.value
        result['balance'] = str(account.balance)
        return result

    def _account_from_dict(self, data: Dict[str, Any]) -> Account:
        return Account(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            first_name=data['first_name'],
            last_name=data['last_name'],
            document=data['document'],
            email=data['email'],
            balance=Decimal(data['balance']),
            role=AccountRole(data['role']),
            password_hash=data.get('password_hash'),
            password_salt=data.get('password_salt'),
            version=data['version']
        )
