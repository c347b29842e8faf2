"""
Registration, login and session endpoints
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Response, status

from ..accounts import Account
from .schemas import LoginRequest, RegisterRequest
from .system import BankingSystem, get_banking_system, get_current_account


router = APIRouter()

EXPIRED = datetime(1970, 1, 1, tzinfo=timezone.utc)


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Open a new account"""
    account = system.identity.register(
        name=request.name,
        email=request.email,
        phone=request.phone,
        account_type=request.account_type,
        password=request.password,
        confirm_password=request.confirm_password
    )
    return {
        "message": "Account created successfully",
        "user": {
            "id": account.id,
            "name": account.name,
            "email": account.email,
            "accountNumber": account.account_number,
        }
    }


@router.post("/login")
async def login(
    request: LoginRequest,
    response: Response,
    system: BankingSystem = Depends(get_banking_system)
):
    """Verify credentials and set the session cookie"""
    result = system.identity.login(request.email, request.password)
    config = system.config
    response.set_cookie(
        key=config.session_cookie_name,
        value=result.token,
        max_age=int(system.sessions.ttl.total_seconds()),
        httponly=True,
        secure=config.cookie_secure,
        samesite=config.cookie_samesite,
    )

    account = result.account
    return {
        "message": "Login successful",
        "user": {
            "id": account.id,
            "name": account.name,
            "email": account.email,
            "accountNumber": account.account_number,
            "accountType": account.account_type.value,
            "balance": account.balance,
            "totalDeposited": account.total_deposited,
            "totalWithdrawn": account.total_withdrawn,
        }
    }


@router.post("/logout")
async def logout(
    response: Response,
    system: BankingSystem = Depends(get_banking_system)
):
    """Overwrite the session cookie with an expired one"""
    response.set_cookie(
        key=system.config.session_cookie_name,
        value="",
        expires=EXPIRED,
        max_age=0,
        httponly=True,
        secure=system.config.cookie_secure,
        samesite=system.config.cookie_samesite,
    )
    return {"message": "Logged out successfully"}


@router.get("/me")
async def me(account: Account = Depends(get_current_account)):
    """Current account's public profile"""
    return {"user": account.public_view()}
