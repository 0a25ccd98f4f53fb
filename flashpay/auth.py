"""
Authentication Module

Registration, login, token refresh and logout on top of the session token
lifecycle. Passwords are stored as salted scrypt hashes on the account.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
import hashlib
import hmac
import secrets
import uuid

from .accounts import Account, AccountRole, AccountStore
from .audit import AuditEventType, AuditTrail
from .currency import AmountLike, to_amount
from .exceptions import AccountNotFound, DuplicateResource, InvalidAmount, InvalidCredentials
from .logging_config import get_logger, log_action
from .tokens import Principal, TokenLifecycle


@dataclass
class AuthResult:
    """Tokens handed back to a client after register, login or refresh"""
    access_token: str
    account: Account
    expires_in: int
    refresh_token: Optional[str] = None
    refresh_expires_in: Optional[int] = None
    token_type: str = "Bearer"


def generate_salt() -> str:
    """Generate random salt for password hashing"""
    return secrets.token_hex(16)


def hash_password(password: str, salt: str) -> str:
    """Hash password with salt using scrypt"""
    return hashlib.scrypt(
        password.encode(),
        salt=salt.encode(),
        n=16384, r=8, p=1
    ).hex()


def verify_password(account: Account, password: str) -> bool:
    """Verify password against the account's stored hash"""
    if not account.password_hash or not account.password_salt:
        return False
    expected = hash_password(password, account.password_salt)
    return hmac.compare_digest(expected, account.password_hash)


class AuthService:
    """Account registration and session management"""

    INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"

    def __init__(self, account_store: AccountStore, token_lifecycle: TokenLifecycle,
                 audit_trail: Optional[AuditTrail] = None):
        self.account_store = account_store
        self.token_lifecycle = token_lifecycle
        self.audit_trail = audit_trail
        self.logger = get_logger("flashpay.auth")

    def register(
        self,
        first_name: str,
        last_name: str,
        email: str,
        password: str,
        document: str,
        role: AccountRole = AccountRole.ORDINARY,
        balance: AmountLike = Decimal("0.00"),
        device_info: Optional[str] = None
    ) -> AuthResult:
        """
        Create an account and open its first session

        Args:
            first_name: Holder first name
            last_name: Holder last name
            email: Unique login email (case-insensitive)
            password: Plain-text password, stored hashed
            document: Unique identity document number
            role: Account role
            balance: Opening balance
            device_info: Optional label stored with the refresh token

        Returns:
            AuthResult with an access and refresh token pair

        Raises:
            DuplicateResource: If the email or document is already registered
            InvalidAmount: If the opening balance is negative or malformed
        """
        email = email.strip().lower()
        document = document.strip()

        if self.account_store.get_by_email(email):
            raise DuplicateResource("Email already registered", field="email")
        if self.account_store.get_by_document(document):
            raise DuplicateResource("Document already registered", field="document")

        opening_balance = to_amount(balance)
        if opening_balance < Decimal('0'):
            raise InvalidAmount("Opening balance cannot be negative")

        salt = generate_salt()
        now = datetime.now(timezone.utc)
        account = Account(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            document=document,
            email=email,
            balance=opening_balance,
            role=role,
            password_hash=hash_password(password, salt),
            password_salt=salt
        )
        self.account_store.create(account)

        log_action(
            self.logger, "info", "Account registered",
            user_id=account.id, action="register", resource=f"account:{account.id}",
            extra={"role": role.value}
        )
        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_CREATED,
                entity_type="account",
                entity_id=account.id,
                metadata={"role": role.value, "opening_balance": opening_balance},
                user_id=account.id
            )

        return self._open_session(account, device_info)

    def login(self, email: str, password: str, device_info: Optional[str] = None) -> AuthResult:
        """
        Authenticate by email and password

        Raises:
            InvalidCredentials: Unknown email or wrong password
        """
        account = self.account_store.get_by_email(email)
        if not account or not verify_password(account, password):
            self.logger.warning("Login failed")
            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=AuditEventType.LOGIN_FAILED,
                    entity_type="account",
                    entity_id=account.id if account else email.strip().lower(),
                    metadata={"reason": "wrong_password" if account else "unknown_email"}
                )
            raise InvalidCredentials(self.INVALID_CREDENTIALS_MESSAGE)

        log_action(
            self.logger, "info", "Login succeeded",
            user_id=account.id, action="login", resource=f"account:{account.id}"
        )
        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=AuditEventType.LOGIN_SUCCESS,
                entity_type="account",
                entity_id=account.id,
                user_id=account.id
            )

        return self._open_session(account, device_info)

    def refresh(self, refresh_token: str) -> AuthResult:
        """Issue a new access token; the refresh token is kept as-is"""
        access_token = self.token_lifecycle.rotate_access(refresh_token)
        principal = self.token_lifecycle.validate_access(access_token)
        account = self.current_account(principal)

        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=AuditEventType.TOKEN_REFRESHED,
                entity_type="account",
                entity_id=account.id,
                user_id=account.id
            )

        return AuthResult(
            access_token=access_token,
            account=account,
            expires_in=self.token_lifecycle.access_expires_in
        )

    def logout(self, refresh_token: str) -> None:
        """Revoke a refresh token. Unknown or already revoked tokens are ignored."""
        self.token_lifecycle.revoke(refresh_token)

    def current_account(self, principal: Principal) -> Account:
        account = self.account_store.get_by_id(principal.account_id)
        if not account:
            raise AccountNotFound(f"Account {principal.account_id} not found",
                                  account_id=principal.account_id)
        return account

    def _open_session(self, account: Account, device_info: Optional[str]) -> AuthResult:
        principal = Principal.from_account(account)
        access_token = self.token_lifecycle.issue_access_token(principal)
        refresh_token = self.token_lifecycle.issue_refresh_token(principal)
        self.token_lifecycle.store_refresh_token(account.id, refresh_token, device_info)

        return AuthResult(
            access_token=access_token,
            account=account,
            expires_in=self.token_lifecycle.access_expires_in,
            refresh_token=refresh_token,
            refresh_expires_in=self.token_lifecycle.refresh_expires_in
        )
