"""
Profile Management Module

Reads and edits the mutable parts of an account: display name, phone and
password. Email and account number cannot be changed here.
"""

from typing import Any, Optional

from .accounts import Account, AccountRepository
from .audit import AuditTrail, AuditEventType
from .errors import InvalidCredentialsError, NotFoundError, ValidationError
from .identity import PasswordHasher
from .logging_config import get_logger, log_action


logger = get_logger("pocket_bank.profile")


class ProfileManager:
    """Profile reads, edits and password changes"""

    def __init__(
        self,
        accounts: AccountRepository,
        hasher: PasswordHasher,
        audit_trail: Optional[AuditTrail] = None,
        password_min_length: int = 6
    ):
        self.accounts = accounts
        self.hasher = hasher
        self.audit_trail = audit_trail
        self.password_min_length = password_min_length

    def get_profile(self, account_id: str) -> Account:
        account = self.accounts.get(account_id)
        if not account:
            raise NotFoundError("Account not found")
        return account

    def update_profile(self, account_id: str, name: Any = None, phone: Any = None) -> Account:
        """
        Apply the provided fields, trimmed. Fields left as None or empty are
        not touched; a field that is only whitespace is rejected.
        """
        updates = {}
        for field_name, value in (('name', name), ('phone', phone)):
            if value is None or value == "":
                continue
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"{field_name.capitalize()} cannot be empty")
            updates[field_name] = value.strip()

        account = self.get_profile(account_id)
        if not updates:
            return account

        for field_name, value in updates.items():
            setattr(account, field_name, value)
        self.accounts.save(account)

        if self.audit_trail:
            self.audit_trail.log_event(
                AuditEventType.PROFILE_UPDATED, "account", account.id,
                {"fields": sorted(updates)}, user_id=account.id
            )
        log_action(
            logger, "info", "Profile updated",
            user_id=account.id, action="update_profile", resource="account",
            extra={"fields": sorted(updates)}
        )
        return account

    def change_password(
        self,
        account_id: str,
        current_password: Any,
        new_password: Any,
        confirm_password: Any
    ) -> None:
        """
        Replace the stored password hash.

        Raises:
            ValidationError: missing fields, short or mismatched new password
            InvalidCredentialsError: current password does not verify
        """
        fields = (current_password, new_password, confirm_password)
        if not all(isinstance(value, str) and value for value in fields):
            raise ValidationError("All password fields are required")
        if len(new_password) < self.password_min_length:
            raise ValidationError(
                f"New password must be at least {self.password_min_length} characters"
            )
        if new_password != confirm_password:
            raise ValidationError("New passwords do not match")

        account = self.get_profile(account_id)
        if not self.hasher.verify(current_password, account.password_hash, account.password_salt):
            log_action(
                logger, "warning", "Password change rejected: current password incorrect",
                user_id=account.id, action="change_password_failed", resource="account"
            )
            raise InvalidCredentialsError("Current password is incorrect")

        account.password_hash, account.password_salt = self.hasher.hash_new(new_password)
        self.accounts.save(account)

        if self.audit_trail:
            self.audit_trail.log_event(
                AuditEventType.PASSWORD_CHANGED, "account", account.id, user_id=account.id
            )
        log_action(
            logger, "info", "Password changed",
            user_id=account.id, action="change_password", resource="account"
        )
