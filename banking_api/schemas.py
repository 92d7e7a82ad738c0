"""
Pydantic schemas for API requests and responses
"""

from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .banking import Account, Customer, Transaction


# Auth schemas
class TokenResponse(BaseModel):
    token: str
    refreshToken: Optional[str] = None


class LogoutRequest(BaseModel):
    refresh_token: str = Field(..., alias="refreshToken")

    model_config = {"populate_by_name": True}


class VerifyResponse(BaseModel):
    isAuthorized: bool
    role: str


# Customer schemas
class CustomerResponse(BaseModel):
    customer_id: str
    name: str
    city: str
    zipcode: str
    date_of_birth: str
    status: str

    @classmethod
    def from_customer(cls, customer: Customer) -> 'CustomerResponse':
        return cls(
            customer_id=customer.id,
            name=customer.name,
            city=customer.city,
            zipcode=customer.zipcode,
            date_of_birth=customer.date_of_birth,
            status=customer.status,
        )


# Account schemas
class NewAccountRequest(BaseModel):
    account_type: str
    amount: Decimal = Field(..., description="Opening deposit")


class NewAccountResponse(BaseModel):
    account_id: str


class AccountResponse(BaseModel):
    account_id: str
    customer_id: str
    account_type: str
    balance: str
    status: str
    opening_date: str

    @classmethod
    def from_account(cls, account: Account) -> 'AccountResponse':
        return cls(
            account_id=account.id,
            customer_id=account.customer_id,
            account_type=account.account_type,
            balance=str(account.balance),
            status=account.status,
            opening_date=account.created_at.isoformat(),
        )


# Transaction schemas
class TransactionRequest(BaseModel):
    amount: Decimal
    transaction_type: str


class TransactionResponse(BaseModel):
    transaction_id: str
    account_id: str
    new_balance: str
    transaction_type: str
    transaction_date: str

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> 'TransactionResponse':
        return cls(
            transaction_id=transaction.id,
            account_id=transaction.account_id,
            new_balance=str(transaction.balance_after),
            transaction_type=transaction.transaction_type,
            transaction_date=transaction.created_at.isoformat(),
        )


# Permissions report
class PermissionsResponse(BaseModel):
    permissions: List[str]
    roles: Dict[str, List[str]]
