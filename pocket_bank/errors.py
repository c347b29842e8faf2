"""
Error Taxonomy Module

Every failure a service can report is a PocketBankError subclass carrying a
machine-readable code and the HTTP status the API answers with.
"""

from typing import Any


class PocketBankError(Exception):
    """Base exception for all pocket bank errors"""
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PocketBankError):
    """Malformed, missing or out-of-range input"""
    code = "VALIDATION_ERROR"
    status_code = 400


class DuplicateEmailError(ValidationError):
    """Email already registered"""
    code = "DUPLICATE_EMAIL"

    def __init__(self, message: str = "Email already registered"):
        super().__init__(message)


class AuthenticationError(PocketBankError):
    """Missing or invalid session"""
    code = "NOT_AUTHENTICATED"
    status_code = 401

    def __init__(self, message: str = "Not authorized, please log in"):
        super().__init__(message)


class InvalidCredentialsError(AuthenticationError):
    """Email/password pair or current password did not verify"""
    code = "INVALID_CREDENTIALS"

    def __init__(self, message: str = "Invalid email or password"):
        super().__init__(message)


class NotFoundError(PocketBankError):
    code = "NOT_FOUND"
    status_code = 404


class RecipientNotFoundError(NotFoundError):
    code = "RECIPIENT_NOT_FOUND"

    def __init__(self, message: str = "Recipient not found"):
        super().__init__(message)


class BusinessRuleError(PocketBankError):
    """Well-formed request that the ledger rules refuse"""
    code = "BUSINESS_RULE_VIOLATION"
    status_code = 400


class InsufficientFundsError(BusinessRuleError):
    code = "INSUFFICIENT_FUNDS"

    def __init__(self, message: str = "Insufficient balance"):
        super().__init__(message)


class SelfTransferError(BusinessRuleError):
    code = "SELF_TRANSFER"

    def __init__(self, message: str = "Cannot transfer to yourself"):
        super().__init__(message)


class ConcurrencyError(PocketBankError):
    """Document changed between load and save"""
    code = "CONCURRENT_MODIFICATION"
    status_code = 409


class InternalError(PocketBankError):
    code = "INTERNAL_ERROR"
    status_code = 500


class AccountNumberExhaustedError(InternalError):
    code = "ACCOUNT_NUMBER_EXHAUSTED"

    def __init__(self, message: str = "Could not allocate a unique account number"):
        super().__init__(message)


class DuplicateKeyError(InternalError):
    """Storage uniqueness constraint violated"""
    code = "DUPLICATE_KEY"

    def __init__(self, table: str, key: str, value: Any):
        super().__init__(f"Duplicate value for {table}.{key}: {value}")
        self.table = table
        self.key = key
        self.value = value
