"""
Pydantic schemas for API requests and responses
"""

from typing import List, Optional
from pydantic import BaseModel, Field

from ..accounts import Account
from ..auth import AuthResult
from ..ledger import Transfer


# Auth schemas
class RegisterRequest(BaseModel):
    first_name: str
    last_name: str
    email: str
    password: str
    document: str = Field(..., description="CPF or CNPJ document number")
    role: str = Field("ORDINARY", description="Account role (ORDINARY, SHOPKEEPER)")
    balance: str = Field("0.00", description="Opening balance as decimal string")
    device_info: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str
    device_info: Optional[str] = None


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class AccountResponse(BaseModel):
    id: str
    first_name: str
    last_name: str
    email: str
    role: str
    balance: str
    authorities: List[str]

    @classmethod
    def from_account(cls, account: Account) -> 'AccountResponse':
        return cls(
            id=account.id,
            first_name=account.first_name,
            last_name=account.last_name,
            email=account.email,
            role=account.role.value,
            balance=str(account.balance),
            authorities=account.authorities
        )


class AuthResponse(BaseModel):
    access_token: str
    token_type: str
    expires_in: int
    refresh_token: Optional[str] = None
    refresh_expires_in: Optional[int] = None
    account: AccountResponse

    @classmethod
    def from_result(cls, result: AuthResult) -> 'AuthResponse':
        return cls(
            access_token=result.access_token,
            token_type=result.token_type,
            expires_in=result.expires_in,
            refresh_token=result.refresh_token,
            refresh_expires_in=result.refresh_expires_in,
            account=AccountResponse.from_account(result.account)
        )


# Transaction schemas
class TransferRequest(BaseModel):
    receiver_id: str
    amount: str = Field(..., description="Decimal amount as string")


class TransferResponse(BaseModel):
    id: str
    sender_id: str
    receiver_id: str
    amount: str
    timestamp: str

    @classmethod
    def from_transfer(cls, transfer: Transfer) -> 'TransferResponse':
        return cls(
            id=transfer.id,
            sender_id=transfer.sender_id,
            receiver_id=transfer.receiver_id,
            amount=str(transfer.amount),
            timestamp=transfer.timestamp.isoformat()
        )
