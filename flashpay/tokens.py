"""
Session Token Module

Issues, validates, rotates, revokes and purges bearer session tokens.

Access tokens are short-lived, self-verifying JWTs and are never stored.
Refresh tokens are longer-lived JWTs tracked in the Token Store so they can
be revoked at logout and purged once expired.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import uuid

import jwt

from .accounts import Account, AccountRole
from .audit import AuditEventType, AuditTrail
from .exceptions import ConcurrentUpdateConflict, InvalidToken
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


class TokenKind(Enum):
    """Kinds of session tokens"""
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller resolved from a token"""
    account_id: str
    email: str
    role: AccountRole
    authorities: List[str] = field(default_factory=list)

    @classmethod
    def from_account(cls, account: Account) -> 'Principal':
        return cls(
            account_id=account.id,
            email=account.email,
            role=account.role,
            authorities=account.authorities
        )


@dataclass
class SessionToken(StorageRecord):
    """Persisted refresh token"""
    account_id: str
    token: str
    kind: TokenKind
    expires_at: datetime
    revoked: bool = False
    revoked_at: Optional[datetime] = None
    device_info: Optional[str] = None
    version: int = 0  # 0 until first persisted

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_usable(self, now: datetime) -> bool:
        """A token is usable iff it is neither revoked nor expired"""
        return not self.revoked and not self.is_expired(now)


class TokenStore:
    """Persistence for refresh-token records"""

    def __init__(self, storage: StorageInterface, table_name: str = "refresh_tokens"):
        self.storage = storage
        self.table_name = table_name

    def save(self, record: SessionToken) -> SessionToken:
        """
        Compare-and-save a token record against ``record.version``

        Raises:
            ConcurrentUpdateConflict: If the record changed or was purged
                since it was read
        """
        expected_version = record.version if record.version > 0 else None
        record.updated_at = datetime.now(timezone.utc)
        record.version = self.storage.compare_and_save(
            self.table_name, record.id, self._token_to_dict(record), expected_version
        )
        return record

    def find_by_raw_token(self, token: str) -> Optional[SessionToken]:
        results = self.storage.find(self.table_name, {"token": token})
        if results:
            return self._token_from_dict(results[0])
        return None

    def find_by_account(self, account_id: str) -> List[SessionToken]:
        return [
            self._token_from_dict(data)
            for data in self.storage.find(self.table_name, {"account_id": account_id})
        ]

    def list_all(self) -> List[SessionToken]:
        return [self._token_from_dict(data) for data in self.storage.load_all(self.table_name)]

    def delete_expired_before(self, timestamp: datetime) -> int:
        """Delete every record whose expiry is before ``timestamp``"""
        return self._delete_matching(lambda record: record.expires_at < timestamp)

    def delete_revoked(self, before: Optional[datetime] = None) -> int:
        """Delete revoked records, optionally only those revoked before ``before``"""
        def revoked_before(record: SessionToken) -> bool:
            if not record.revoked:
                return False
            if before is None:
                return True
            revoked_at = record.revoked_at or record.updated_at
            return revoked_at < before

        return self._delete_matching(revoked_before)

    def _delete_matching(self, predicate: Callable[[SessionToken], bool]) -> int:
        doomed = [record.id for record in self.list_all() if predicate(record)]
        deleted = 0
        with self.storage.atomic():
            for record_id in doomed:
                if self.storage.delete(self.table_name, record_id):
                    deleted += 1
        return deleted

    def _token_to_dict(self, record: SessionToken) -> Dict[str, Any]:
        result = record.to_dict()
        result['kind'] = record.kind.value
        return result

    def _token_from_dict(self, data: Dict[str, Any]) -> SessionToken:
        return SessionToken(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            account_id=data['account_id'],
            token=data['token'],
            kind=TokenKind(data['kind']),
            expires_at=datetime.fromisoformat(data['expires_at']),
            revoked=data.get('revoked', False),
            revoked_at=datetime.fromisoformat(data['revoked_at']) if data.get('revoked_at') else None,
            device_info=data.get('device_info'),
            version=data['version']
        )


class TokenLifecycle:
    """
    Session token lifecycle: issuance, validation, rotation, revocation and sweep

    Refresh-token states are ACTIVE, EXPIRED (derived from ``expires_at``),
    REVOKED (explicit) and finally PURGED (deleted by the sweep).
    """

    def __init__(
        self,
        token_store: TokenStore,
        account_resolver: Callable[[str], Optional[Account]],
        secret: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(hours=24),
        refresh_ttl: timedelta = timedelta(days=7),
        revoked_retention: timedelta = timedelta(days=1),
        audit_trail: Optional[AuditTrail] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        self.token_store = token_store
        self.account_resolver = account_resolver
        self.secret = secret
        self.algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.revoked_retention = revoked_retention
        self.audit_trail = audit_trail
        self.clock = clock
        self.logger = get_logger("flashpay.tokens")

    @property
    def access_expires_in(self) -> int:
        return int(self.access_ttl.total_seconds())

    @property
    def refresh_expires_in(self) -> int:
        return int(self.refresh_ttl.total_seconds())

    # Issuance

    def issue_access_token(self, principal: Principal) -> str:
        """Sign a stateless access token carrying identity and authorities"""
        return self._sign(TokenKind.ACCESS, principal.account_id, self.access_ttl, {
            "email": principal.email,
            "role": principal.role.value,
            "authorities": list(principal.authorities)
        })

    def issue_refresh_token(self, principal: Principal) -> str:
        """Sign a refresh token; persist it with store_refresh_token"""
        return self._sign(TokenKind.REFRESH, principal.account_id, self.refresh_ttl, {})

    def store_refresh_token(self, account_id: str, token: str,
                            device_info: Optional[str] = None) -> SessionToken:
        """Persist an issued refresh token keyed to its owning account"""
        claims = self._decode(token, TokenKind.REFRESH)
        if claims["sub"] != account_id:
            raise InvalidToken("Refresh token does not belong to this account")

        now = self.clock()
        record = SessionToken(
            id=claims["jti"],
            created_at=now,
            updated_at=now,
            account_id=account_id,
            token=token,
            kind=TokenKind.REFRESH,
            expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
            device_info=device_info
        )
        self.token_store.save(record)
        self.logger.debug(f"Refresh token stored for account {account_id}")
        return record

    def _sign(self, kind: TokenKind, subject: str, ttl: timedelta, claims: Dict[str, Any]) -> str:
        now = self.clock()
        payload = {
            "sub": subject,
            "type": kind.value,
            "jti": str(uuid.uuid4()),
            "iat": now,
            "exp": now + ttl,
            **claims
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    # Validation

    def _decode(self, token: str, kind: TokenKind) -> Dict[str, Any]:
        """Verify signature, expiry and token kind"""
        try:
            # Time claims are checked against self.clock below
            claims = jwt.decode(
                token, self.secret, algorithms=[self.algorithm],
                options={
                    "require": ["sub", "exp", "iat", "jti", "type"],
                    "verify_exp": False,
                    "verify_iat": False
                }
            )
        except jwt.InvalidTokenError as e:
            raise InvalidToken(f"Invalid token: {e}")

        try:
            expires_at = float(claims["exp"])
        except (TypeError, ValueError):
            raise InvalidToken("Invalid token: malformed exp claim")
        if expires_at <= self.clock().timestamp():
            raise InvalidToken("Token expired")
        if claims["type"] != kind.value:
            raise InvalidToken(f"Expected a {kind.value} token")
        return claims

    def validate_access(self, token: str) -> Principal:
        """
        Resolve an access token to its principal without consulting storage

        Raises:
            InvalidToken: Bad signature, expired, or not an access token
        """
        claims = self._decode(token, TokenKind.ACCESS)
        try:
            role = AccountRole(claims.get("role"))
        except ValueError:
            raise InvalidToken("Token carries an unknown role")
        return Principal(
            account_id=claims["sub"],
            email=claims.get("email", ""),
            role=role,
            authorities=list(claims.get("authorities", []))
        )

    def validate_refresh(self, token: str) -> Principal:
        """
        Resolve a refresh token to its principal

        Checks the signature, expiry and refresh marker, then requires a stored
        record that is neither revoked nor expired.

        Raises:
            InvalidToken: If any check fails, including a record purged
                concurrently by the sweep
        """
        claims = self._decode(token, TokenKind.REFRESH)

        record = self.token_store.find_by_raw_token(token)
        if record is None:
            self.logger.warning("Refresh token not found in store")
            raise InvalidToken("Refresh token not recognised")
        if record.revoked:
            self.logger.warning(f"Revoked refresh token presented for account {record.account_id}")
            raise InvalidToken("Refresh token revoked")
        if record.is_expired(self.clock()):
            raise InvalidToken("Refresh token expired")
        if record.account_id != claims["sub"]:
            raise InvalidToken("Refresh token owner mismatch")

        account = self.account_resolver(record.account_id)
        if account is None:
            raise InvalidToken("Refresh token owner no longer exists")
        return Principal.from_account(account)

    def rotate_access(self, refresh_token: str) -> str:
        """Mint a fresh access token from a valid refresh token"""
        principal = self.validate_refresh(refresh_token)
        access_token = self.issue_access_token(principal)
        log_action(
            self.logger, "info", "Access token rotated",
            user_id=principal.account_id, action="rotate_access", resource="auth"
        )
        return access_token

    # Revocation

    def revoke(self, refresh_token: str) -> bool:
        """
        Revoke a stored refresh token

        Idempotent: a missing or already-revoked token is a silent no-op.

        Returns:
            True if a record was revoked by this call
        """
        record = self.token_store.find_by_raw_token(refresh_token)
        if record is None or record.revoked:
            self.logger.debug("Revoke requested for unknown or already revoked token")
            return False

        record.revoked = True
        record.revoked_at = self.clock()
        try:
            self.token_store.save(record)
        except ConcurrentUpdateConflict:
            # Revoked or purged by another caller since it was read
            self.logger.debug(f"Refresh token {record.id} changed before it could be revoked")
            return False

        log_action(
            self.logger, "info", "Refresh token revoked",
            user_id=record.account_id, action="revoke", resource=f"refresh_token:{record.id}"
        )
        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=AuditEventType.TOKEN_REVOKED,
                entity_type="refresh_token",
                entity_id=record.id,
                user_id=record.account_id
            )
        return True

    def revoke_all_for_account(self, account_id: str) -> int:
        """Revoke every active refresh token owned by an account"""
        revoked = 0
        for record in self.token_store.find_by_account(account_id):
            if not record.revoked and self.revoke(record.token):
                revoked += 1
        return revoked

    # Maintenance

    def sweep_expired(self) -> int:
        """Delete stored refresh tokens whose expiry has passed"""
        deleted = self.token_store.delete_expired_before(self.clock())
        self.logger.info(f"Expired token sweep removed {deleted} record(s)")
        self._audit_purge("expired", deleted)
        return deleted

    def sweep_revoked(self) -> int:
        """Delete refresh tokens revoked longer ago than the retention window"""
        cutoff = self.clock() - self.revoked_retention
        deleted = self.token_store.delete_revoked(before=cutoff)
        self.logger.info(f"Revoked token sweep removed {deleted} record(s)")
        self._audit_purge("revoked", deleted)
        return deleted

    def sweep(self) -> Dict[str, int]:
        """Run both sweeps"""
        return {"expired": self.sweep_expired(), "revoked": self.sweep_revoked()}

    def _audit_purge(self, reason: str, deleted: int) -> None:
        if self.audit_trail and deleted:
            self.audit_trail.log_event(
                event_type=AuditEventType.TOKENS_PURGED,
                entity_type="refresh_token",
                entity_id=f"sweep_{reason}",
                metadata={"reason": reason, "deleted": deleted}
            )

    def token_statistics(self) -> Dict[str, int]:
        """Count stored refresh tokens by derived state"""
        now = self.clock()
        stats = {"total": 0, "active": 0, "expired": 0, "revoked": 0}
        for record in self.token_store.list_all():
            stats["total"] += 1
            if record.revoked:
                stats["revoked"] += 1
            elif record.is_expired(now):
                stats["expired"] += 1
            else:
                stats["active"] += 1
        return stats
