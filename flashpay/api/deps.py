"""
System wiring and request dependencies
"""

from datetime import timedelta
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..accounts import AccountStore
from ..audit import AuditTrail
from ..auth import AuthService
from ..config import FlashPayConfig, get_config
from ..exceptions import InvalidToken
from ..ledger import TransactionStore
from ..scheduler import TokenSweepScheduler
from ..storage import InMemoryStorage, SQLiteStorage, StorageInterface
from ..tokens import Principal, TokenLifecycle, TokenStore
from ..transfers import TransferEngine


class FlashPaySystem:
    """Transfer service with all components initialized"""

    def __init__(self, config: Optional[FlashPayConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.config = config or get_config()

        # Initialize storage
        if storage is not None:
            self.storage = storage
        elif self.config.use_sqlite:
            self.storage = SQLiteStorage(self.config.database_path, timeout=self.config.store_timeout_seconds)
        else:
            self.storage = InMemoryStorage(timeout=self.config.store_timeout_seconds)

        # Initialize stores
        self.audit_trail = AuditTrail(self.storage)
        self.account_store = AccountStore(self.storage)
        self.transaction_store = TransactionStore(self.storage)
        self.token_store = TokenStore(self.storage)

        # Initialize core components
        self.transfer_engine = TransferEngine(
            self.storage, self.account_store, self.transaction_store,
            self.audit_trail, max_retries=self.config.transfer_max_retries
        )
        self.token_lifecycle = TokenLifecycle(
            self.token_store,
            self.account_store.get_by_id,
            secret=self.config.jwt_secret,
            algorithm=self.config.jwt_algorithm,
            access_ttl=timedelta(hours=self.config.access_token_ttl_hours),
            refresh_ttl=timedelta(days=self.config.refresh_token_ttl_days),
            revoked_retention=timedelta(days=self.config.revoked_token_retention_days),
            audit_trail=self.audit_trail
        )
        self.auth_service = AuthService(self.account_store, self.token_lifecycle, self.audit_trail)
        self.scheduler = TokenSweepScheduler(
            self.token_lifecycle,
            expired_interval=self.config.expired_sweep_interval_seconds,
            revoked_interval=self.config.revoked_sweep_interval_seconds,
            statistics_interval=self.config.statistics_interval_seconds
        )

    def start(self) -> None:
        if self.config.enable_token_sweeper:
            self.scheduler.start()

    def shutdown(self) -> None:
        self.scheduler.stop()
        self.storage.close()


# JWT Security
security = HTTPBearer(auto_error=False)


# Dependency to get the system attached to the running app
def get_system(request: Request) -> FlashPaySystem:
    return request.app.state.system


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: FlashPaySystem = Depends(get_system)
) -> Principal:
    """Dependency that validates the bearer access token and returns its principal"""
    if not credentials:
        raise InvalidToken("Not authenticated")
    return system.token_lifecycle.validate_access(credentials.credentials)
