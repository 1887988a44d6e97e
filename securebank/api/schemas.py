"""
Pydantic schemas for API requests
"""

from typing import Optional, Union

from pydantic import BaseModel, Field

from ..transactions import TransferRequest


AmountField = Union[str, int, float]


class LoginRequest(BaseModel):
    identifier: str = Field(..., description="Email address or 10-digit account number")
    password: str


class TransferRequestModel(BaseModel):
    recipient_name: str
    recipient_email: str
    recipient_account: str
    recipient_bank: str = Field(..., description="SWIFT/BIC code of the recipient's bank")
    amount: AmountField = Field(..., description="Amount in the requested currency")
    currency: str = "ZAR"
    reference: str
    purpose: Optional[str] = None
    exchange_rate: Optional[AmountField] = None

    def to_request(self) -> TransferRequest:
        return TransferRequest(
            recipient_name=self.recipient_name,
            recipient_email=self.recipient_email,
            recipient_account=self.recipient_account,
            recipient_bank=self.recipient_bank,
            amount=self.amount,
            reference=self.reference,
            currency=self.currency,
            purpose=self.purpose,
            exchange_rate=self.exchange_rate,
        )


class QuoteRequest(BaseModel):
    amount: AmountField
    currency: str = "ZAR"
    exchange_rate: Optional[AmountField] = None


class DepositRequest(BaseModel):
    amount: AmountField
    reference: Optional[str] = None


class WithdrawRequest(BaseModel):
    amount: AmountField
    reference: Optional[str] = None


class CreateUserRequest(BaseModel):
    email: str
    password: str
    first_name: str
    last_name: str
    role: str = "customer"
    initial_balance: Optional[AmountField] = None


class UserStatusRequest(BaseModel):
    is_active: Optional[bool] = Field(None, description="Omit to toggle the current state")


class FailTransactionRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=200, description="Why settlement failed")
