"""
Administrator endpoints: account provisioning, status changes, oversight
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from ..service import BankingSystem
from .dependencies import get_banking_system, get_token
from .schemas import CreateUserRequest, FailTransactionRequest, UserStatusRequest


router = APIRouter()


@router.get("/users")
def list_users(
    token: Optional[str] = Depends(get_token),
    system: BankingSystem = Depends(get_banking_system)
) -> Dict[str, Any]:
    users = system.admin_list_users(token)
    return {"users": [u.to_dict() for u in users], "count": len(users)}


@router.get("/transactions")
def list_transactions(
    limit: Optional[int] = Query(None, ge=1, le=1000),
    token: Optional[str] = Depends(get_token),
    system: BankingSystem = Depends(get_banking_system)
) -> Dict[str, Any]:
    transactions = system.admin_list_transactions(token, limit)
    return {
        "transactions": [t.to_public_dict() for t in transactions],
        "count": len(transactions),
    }


@router.post("/users", status_code=201)
def create_user(
    body: CreateUserRequest,
    token: Optional[str] = Depends(get_token),
    system: BankingSystem = Depends(get_banking_system)
) -> Dict[str, Any]:
    """Provision a new account, optionally with an opening balance"""
    view = system.admin_create_user(
        token, body.email, body.password, body.first_name, body.last_name,
        body.role, body.initial_balance
    )
    return {"user": view.to_dict()}


@router.post("/users/{account_id}/status")
def set_user_status(
    account_id: str,
    body: Optional[UserStatusRequest] = None,
    token: Optional[str] = Depends(get_token),
    system: BankingSystem = Depends(get_banking_system)
) -> Dict[str, Any]:
    """Activate, deactivate or toggle an account"""
    is_active = body.is_active if body else None
    view = system.admin_toggle_user_status(token, account_id, is_active)
    return {"user": view.to_dict()}


@router.post("/transactions/{transaction_id}/complete")
def complete_transaction(
    transaction_id: str,
    token: Optional[str] = Depends(get_token),
    system: BankingSystem = Depends(get_banking_system)
) -> Dict[str, Any]:
    """Mark a pending transfer as settled"""
    transaction = system.admin_complete_transaction(token, transaction_id)
    return {"transaction": transaction.to_public_dict()}


@router.post("/transactions/{transaction_id}/fail")
def fail_transaction(
    transaction_id: str,
    body: Optional[FailTransactionRequest] = None,
    token: Optional[str] = Depends(get_token),
    system: BankingSystem = Depends(get_banking_system)
) -> Dict[str, Any]:
    """Mark a pending transfer as failed and refund the sender"""
    transaction = system.admin_fail_transaction(token, transaction_id,
                                                body.reason if body else None)
    return {"transaction": transaction.to_public_dict()}


@router.post("/maintenance")
def run_maintenance(
    token: Optional[str] = Depends(get_token),
    system: BankingSystem = Depends(get_banking_system)
) -> Dict[str, Any]:
    """Run the expiry sweep now instead of waiting for the background worker"""
    return {"maintenance": system.admin_run_maintenance(token)}
