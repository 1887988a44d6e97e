"""
Transfer, deposit, withdrawal and history endpoints
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request

from ..service import BankingSystem
from .dependencies import client_ip, get_banking_system, get_token, user_agent
from .schemas import DepositRequest, QuoteRequest, TransferRequestModel, WithdrawRequest


transfers_router = APIRouter()
router = APIRouter()


@transfers_router.post("", status_code=201)
def create_transfer(
    body: TransferRequestModel,
    request: Request,
    token: Optional[str] = Depends(get_token),
    system: BankingSystem = Depends(get_banking_system)
) -> Dict[str, Any]:
    """Initiate a transfer to another bank account"""
    receipt = system.transfer(token, body.to_request(), client_ip(request), user_agent(request))
    return receipt.to_dict()


@transfers_router.post("/quote")
def quote_transfer(
    body: QuoteRequest,
    token: Optional[str] = Depends(get_token),
    system: BankingSystem = Depends(get_banking_system)
) -> Dict[str, Any]:
    """Preview exchange rate and fees for a transfer"""
    quote = system.quote_transfer(token, body.amount, body.currency, body.exchange_rate)
    return quote.to_dict()


@transfers_router.post("/{transaction_id}/cancel")
def cancel_transfer(
    transaction_id: str,
    token: Optional[str] = Depends(get_token),
    system: BankingSystem = Depends(get_banking_system)
) -> Dict[str, Any]:
    """Cancel a pending transfer and return the funds"""
    transaction = system.cancel_transfer(token, transaction_id)
    return {"transaction": transaction.to_public_dict()}


@router.post("/deposit", status_code=201)
def deposit(
    body: DepositRequest,
    request: Request,
    token: Optional[str] = Depends(get_token),
    system: BankingSystem = Depends(get_banking_system)
) -> Dict[str, Any]:
    """Deposit funds into the caller's account"""
    receipt = system.deposit(token, body.amount, body.reference,
                             client_ip(request), user_agent(request))
    return receipt.to_dict()


@router.post("/withdraw", status_code=201)
def withdraw(
    body: WithdrawRequest,
    request: Request,
    token: Optional[str] = Depends(get_token),
    system: BankingSystem = Depends(get_banking_system)
) -> Dict[str, Any]:
    """Withdraw funds from the caller's account"""
    receipt = system.withdraw(token, body.amount, body.reference,
                              client_ip(request), user_agent(request))
    return receipt.to_dict()


@router.get("")
def list_transactions(
    limit: Optional[int] = Query(None, ge=1, le=500),
    token: Optional[str] = Depends(get_token),
    system: BankingSystem = Depends(get_banking_system)
) -> Dict[str, Any]:
    """Caller's transactions, most recent first"""
    transactions = system.list_transactions(token, limit)
    return {
        "transactions": [t.to_public_dict() for t in transactions],
        "count": len(transactions),
    }
