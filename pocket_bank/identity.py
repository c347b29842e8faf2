"""
Identity and Credentials Module

Registration, login and session tokens. Passwords are stored as salted
scrypt hashes; sessions are stateless signed JWTs carried in a cookie, so
logging out only clears the cookie on the client.
"""

import hashlib
import hmac
import random
import re
import secrets
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

import jwt

from .accounts import Account, AccountRepository, AccountType, normalize_email
from .audit import AuditTrail, AuditEventType
from .errors import (
    AccountNumberExhaustedError, AuthenticationError, DuplicateEmailError,
    DuplicateKeyError, InvalidCredentialsError, ValidationError,
)
from .logging_config import get_logger, log_action


logger = get_logger("pocket_bank.identity")

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')


class PasswordHasher:
    """Salted scrypt hashing with constant-time verification"""

    def __init__(self, n: int = 16384, r: int = 8, p: int = 1):
        self.n = n
        self.r = r
        self.p = p
        # Checked against when no account matches, so both paths cost one scrypt
        self.dummy_salt = self.generate_salt()
        self.dummy_hash = self.hash(secrets.token_hex(16), self.dummy_salt)

    def generate_salt(self) -> str:
        return secrets.token_hex(16)

    def hash(self, password: str, salt: str) -> str:
        return hashlib.scrypt(
            password.encode(),
            salt=salt.encode(),
            n=self.n, r=self.r, p=self.p
        ).hex()

    def hash_new(self, password: str) -> Tuple[str, str]:
        """Hash with a fresh salt, returning (hash, salt)"""
        salt = self.generate_salt()
        return self.hash(password, salt), salt

    def verify(self, password: str, password_hash: str, salt: str) -> bool:
        if not password_hash or not salt:
            return False
        return hmac.compare_digest(self.hash(password, salt), password_hash)


class AccountNumberGenerator:
    """
    Allocates account numbers of the form ``KB`` + 10 time digits + random digits.

    Candidates are drawn with a 2-digit random suffix; after ``max_attempts``
    collisions the suffix widens to 8 digits for another ``max_attempts``
    draws. If every candidate collides AccountNumberExhaustedError is raised.
    """

    NARROW_SUFFIX_DIGITS = 2
    WIDE_SUFFIX_DIGITS = 8

    def __init__(
        self,
        exists: Callable[[str], bool],
        prefix: str = "KB",
        max_attempts: int = 10,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None
    ):
        self.exists = exists
        self.prefix = prefix
        self.max_attempts = max_attempts
        self.clock = clock
        self.rng = rng or random.SystemRandom()

    def candidate(self, suffix_digits: int) -> str:
        millis = str(int(self.clock() * 1000))[-10:].rjust(10, '0')
        suffix = str(self.rng.randrange(10 ** suffix_digits)).zfill(suffix_digits)
        return f"{self.prefix}{millis}{suffix}"

    def generate(self) -> str:
        for suffix_digits in (self.NARROW_SUFFIX_DIGITS, self.WIDE_SUFFIX_DIGITS):
            for _ in range(self.max_attempts):
                account_number = self.candidate(suffix_digits)
                if not self.exists(account_number):
                    return account_number
            logger.warning(
                "Account number space exhausted after %d attempts with %d-digit suffix",
                self.max_attempts, suffix_digits
            )
        raise AccountNumberExhaustedError()


class SessionManager:
    """Issues and verifies signed session tokens"""

    def __init__(self, secret: str, algorithm: str = "HS256", ttl: timedelta = timedelta(days=7)):
        self.secret = secret
        self.algorithm = algorithm
        self.ttl = ttl

    def issue(self, account_id: str, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        payload = {
            "sub": account_id,
            "iat": now,
            "exp": now + self.ttl,
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify(self, token: Optional[str]) -> str:
        """Return the account id the token was issued for"""
        if not token:
            raise AuthenticationError()
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Session expired, please log in again")
        except jwt.InvalidTokenError:
            raise AuthenticationError()

        account_id = payload.get("sub")
        if not account_id:
            raise AuthenticationError()
        return account_id


@dataclass
class LoginResult:
    account: Account
    token: str


def _require_text(*values: Any) -> bool:
    return all(isinstance(value, str) and value.strip() for value in values)


class IdentityService:
    """
    Account registration, credential verification and session resolution
    """

    def __init__(
        self,
        accounts: AccountRepository,
        hasher: PasswordHasher,
        sessions: SessionManager,
        account_numbers: Optional[AccountNumberGenerator] = None,
        audit_trail: Optional[AuditTrail] = None,
        password_min_length: int = 6
    ):
        self.accounts = accounts
        self.hasher = hasher
        self.sessions = sessions
        self.account_numbers = account_numbers or AccountNumberGenerator(
            accounts.account_number_exists
        )
        self.audit_trail = audit_trail
        self.password_min_length = password_min_length

    def _audit(self, event_type: AuditEventType, account_id: str,
               metadata: Optional[Dict[str, Any]] = None) -> None:
        if self.audit_trail:
            self.audit_trail.log_event(
                event_type, "account", account_id, metadata, user_id=account_id
            )

    def register(
        self,
        name: Any,
        email: Any,
        phone: Any,
        account_type: Any,
        password: Any,
        confirm_password: Any
    ) -> Account:
        """
        Create an account with a zero balance.

        Raises:
            ValidationError: missing or malformed fields, weak or mismatched password
            DuplicateEmailError: email already registered (case-insensitive)
        """
        passwords_present = all(
            isinstance(value, str) and value for value in (password, confirm_password)
        )
        if not _require_text(name, email, phone, account_type) or not passwords_present:
            raise ValidationError("All fields are required")
        if not EMAIL_PATTERN.match(email.strip()):
            raise ValidationError("Invalid email format")
        if len(password) < self.password_min_length:
            raise ValidationError(
                f"Password must be at least {self.password_min_length} characters"
            )
        if password != confirm_password:
            raise ValidationError("Passwords do not match")
        try:
            kind = AccountType(account_type.strip().lower())
        except ValueError:
            raise ValidationError("Invalid account type")

        normalized_email = normalize_email(email)
        if self.accounts.get_by_email(normalized_email):
            raise DuplicateEmailError()

        password_hash, salt = self.hasher.hash_new(password)
        now = datetime.now(timezone.utc)
        account = Account(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name.strip(),
            email=normalized_email,
            phone=phone.strip(),
            account_type=kind,
            account_number=self.account_numbers.generate(),
            password_hash=password_hash,
            password_salt=salt,
        )
        try:
            self.accounts.add(account)
        except DuplicateKeyError as exc:
            # Lost a race for the account number between generate() and insert
            raise AccountNumberExhaustedError() from exc

        self._audit(AuditEventType.ACCOUNT_REGISTERED, account.id,
                    {"account_number": account.account_number})
        log_action(
            logger, "info", "Account registered",
            user_id=account.id, action="register", resource="account",
            extra={"account_number": account.account_number}
        )
        return account

    def login(self, email: Any, password: Any) -> LoginResult:
        """
        Verify credentials and issue a session token.

        Unknown email and wrong password raise the same InvalidCredentialsError.
        """
        if not _require_text(email) or not isinstance(password, str) or not password:
            raise ValidationError("Email and password are required")

        account = self.accounts.get_by_email(email)
        if account:
            verified = self.hasher.verify(password, account.password_hash, account.password_salt)
        else:
            self.hasher.verify(password, self.hasher.dummy_hash, self.hasher.dummy_salt)
            verified = False

        if not verified:
            if account:
                self._audit(AuditEventType.LOGIN_FAILED, account.id)
            log_action(
                logger, "warning", "Login failed",
                action="login_failed", resource="auth"
            )
            raise InvalidCredentialsError()

        token = self.sessions.issue(account.id)
        self._audit(AuditEventType.LOGIN_SUCCEEDED, account.id)
        log_action(
            logger, "info", "Login succeeded",
            user_id=account.id, action="login", resource="auth"
        )
        return LoginResult(account=account, token=token)

    def get_current_account(self, token: Optional[str]) -> Account:
        """Resolve a session token to its account"""
        account_id = self.sessions.verify(token)
        account = self.accounts.get(account_id)
        if not account:
            raise AuthenticationError()
        return account
