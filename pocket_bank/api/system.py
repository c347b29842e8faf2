"""
Service wiring and request dependencies
"""

from datetime import timedelta
from typing import Optional

from fastapi import Depends, Request

from ..accounts import Account, AccountRepository
from ..audit import AuditTrail
from ..config import PocketBankConfig, get_config
from ..identity import AccountNumberGenerator, IdentityService, PasswordHasher, SessionManager
from ..ledger import AccountLedger
from ..profile import ProfileManager
from ..storage import StorageInterface, create_storage
from ..transactions import TransactionRecorder


class BankingSystem:
    """All services wired over one storage backend"""

    def __init__(
        self,
        config: Optional[PocketBankConfig] = None,
        storage: Optional[StorageInterface] = None,
        hasher: Optional[PasswordHasher] = None
    ):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config)

        self.audit_trail = AuditTrail(self.storage) if self.config.enable_audit_logging else None
        self.accounts = AccountRepository(self.storage)
        self.recorder = TransactionRecorder(self.storage)
        self.hasher = hasher or PasswordHasher()
        self.sessions = SessionManager(
            secret=self.config.jwt_secret,
            algorithm=self.config.jwt_algorithm,
            ttl=timedelta(days=self.config.session_ttl_days)
        )

        self.ledger = AccountLedger(self.accounts, self.recorder, self.audit_trail)
        self.identity = IdentityService(
            self.accounts,
            self.hasher,
            self.sessions,
            account_numbers=AccountNumberGenerator(
                self.accounts.account_number_exists,
                prefix=self.config.account_number_prefix,
                max_attempts=self.config.account_number_max_attempts
            ),
            audit_trail=self.audit_trail,
            password_min_length=self.config.password_min_length
        )
        self.profiles = ProfileManager(
            self.accounts,
            self.hasher,
            audit_trail=self.audit_trail,
            password_min_length=self.config.password_min_length
        )

    def close(self) -> None:
        self.storage.close()


def get_banking_system(request: Request) -> BankingSystem:
    return request.app.state.banking_system


def get_current_account(
    request: Request,
    system: BankingSystem = Depends(get_banking_system)
) -> Account:
    """Resolve the session cookie to an account, or fail with 401"""
    token = request.cookies.get(system.config.session_cookie_name)
    return system.identity.get_current_account(token)
