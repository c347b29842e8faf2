"""
Pydantic schemas for API requests

Field values are passed through to the services, which own the validation
rules and error messages; the schemas only fix the JSON field names.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# Auth schemas
class RegisterRequest(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    account_type: Optional[str] = Field(None, alias="accountType")
    password: Optional[str] = None
    confirm_password: Optional[str] = Field(None, alias="confirmPassword")


class LoginRequest(CamelModel):
    email: Optional[str] = None
    password: Optional[str] = None


# Ledger schemas
class AmountRequest(CamelModel):
    amount: Any = Field(None, description="Positive number or numeric string")


class TransferRequest(CamelModel):
    recipient_email_or_account: Optional[str] = Field(None, alias="recipientEmailOrAccount")
    amount: Any = Field(None, description="Positive number or numeric string")


# Profile schemas
class UpdateProfileRequest(CamelModel):
    name: Optional[str] = None
    phone: Optional[str] = None


class ChangePasswordRequest(CamelModel):
    current_password: Optional[str] = Field(None, alias="currentPassword")
    new_password: Optional[str] = Field(None, alias="newPassword")
    confirm_password: Optional[str] = Field(None, alias="confirmPassword")
