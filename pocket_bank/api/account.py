"""
Ledger, history and profile endpoints for the logged-in account
"""

from fastapi import APIRouter, Depends

from ..accounts import Account
from .schemas import AmountRequest, ChangePasswordRequest, TransferRequest, UpdateProfileRequest
from .system import BankingSystem, get_banking_system, get_current_account


router = APIRouter()


@router.post("/deposit")
async def deposit(
    request: AmountRequest,
    account: Account = Depends(get_current_account),
    system: BankingSystem = Depends(get_banking_system)
):
    """Deposit money"""
    result = system.ledger.deposit(account.id, request.amount)
    return {
        "message": "Deposit successful",
        "balance": result.balance,
        "totalDeposited": result.total_deposited,
    }


@router.post("/withdraw")
async def withdraw(
    request: AmountRequest,
    account: Account = Depends(get_current_account),
    system: BankingSystem = Depends(get_banking_system)
):
    """Withdraw money"""
    result = system.ledger.withdraw(account.id, request.amount)
    return {
        "message": "Withdrawal successful",
        "balance": result.balance,
        "totalWithdrawn": result.total_withdrawn,
    }


@router.post("/transfer")
async def transfer(
    request: TransferRequest,
    account: Account = Depends(get_current_account),
    system: BankingSystem = Depends(get_banking_system)
):
    """Send money to another account by email or account number"""
    result = system.ledger.transfer(
        account.id, request.recipient_email_or_account, request.amount
    )
    return {
        "message": "Transfer successful",
        "balance": result.balance,
        "totalWithdrawn": result.total_withdrawn,
    }


@router.get("/transactions")
async def get_transactions(
    account: Account = Depends(get_current_account),
    system: BankingSystem = Depends(get_banking_system)
):
    """Transaction history, newest first"""
    records = system.recorder.get_account_transactions(account.id)
    return {"transactions": [record.to_api() for record in records]}


@router.get("/profile")
async def get_profile(account: Account = Depends(get_current_account)):
    return {"user": account.public_view()}


@router.put("/profile")
async def update_profile(
    request: UpdateProfileRequest,
    account: Account = Depends(get_current_account),
    system: BankingSystem = Depends(get_banking_system)
):
    """Update name and/or phone"""
    updated = system.profiles.update_profile(account.id, name=request.name, phone=request.phone)
    return {
        "message": "Profile updated successfully",
        "user": {
            "id": updated.id,
            "name": updated.name,
            "email": updated.email,
            "phone": updated.phone,
            "accountType": updated.account_type.value,
            "accountNumber": updated.account_number,
        }
    }


@router.put("/change-password")
async def change_password(
    request: ChangePasswordRequest,
    account: Account = Depends(get_current_account),
    system: BankingSystem = Depends(get_banking_system)
):
    system.profiles.change_password(
        account.id,
        request.current_password,
        request.new_password,
        request.confirm_password
    )
    return {"message": "Password changed successfully"}
