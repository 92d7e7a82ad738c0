"""
Banking Module

Customers, accounts and deposit/withdrawal transactions served by the main API.
These are thin storage-backed repositories; all access control happens before a
request reaches them.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Union

from .errors import NotFoundError, UnexpectedError, ValidationError
from .storage import StorageInterface, StorageRecord


logger = logging.getLogger("banking_api.banking")

CUSTOMERS_TABLE = "customers"
ACCOUNTS_TABLE = "accounts"
TRANSACTIONS_TABLE = "transactions"

CUSTOMER_STATUSES = ("active", "inactive")
ACCOUNT_TYPES = ("saving", "checking")
DEPOSIT = "deposit"
WITHDRAWAL = "withdrawal"
MINIMUM_OPENING_DEPOSIT = Decimal("5000.00")


def to_decimal(amount: Union[str, int, float, Decimal]) -> Decimal:
    """Parse a monetary amount"""
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError("Amount must be a number") from e
    if not value.is_finite():
        raise ValidationError("Amount must be a number")
    return value


@dataclass
class Customer(StorageRecord):
    name: str
    city: str
    zipcode: str
    date_of_birth: str
    status: str = "active"


@dataclass
class Account(StorageRecord):
    customer_id: str
    account_type: str
    balance: Decimal
    status: str = "active"

    def can_withdraw(self, amount: Decimal) -> bool:
        return self.balance >= amount

    @classmethod
    def from_dict(cls, data) -> 'Account':
        account = super().from_dict(data)
        account.balance = Decimal(str(account.balance))
        return account


@dataclass
class Transaction(StorageRecord):
    account_id: str
    amount: Decimal
    transaction_type: str
    balance_after: Decimal


class CustomerRepository:
    """Customer records"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    def list_customers(self, status: Optional[str] = None) -> List[Customer]:
        """
        List customers, optionally filtered by status.

        Args:
            status: "active", "inactive" or None/empty for all customers
        """
        if status:
            status = status.strip().lower()
            if status not in CUSTOMER_STATUSES:
                raise ValidationError("Status must be 'active' or 'inactive'")
            records = self._call(self.storage.find, CUSTOMERS_TABLE, {"status": status})
        else:
            records = self._call(self.storage.load_all, CUSTOMERS_TABLE)
        return sorted((Customer.from_dict(r) for r in records), key=lambda c: c.id)

    def get_customer(self, customer_id: str) -> Customer:
        data = self._call(self.storage.load, CUSTOMERS_TABLE, str(customer_id))
        if data is None:
            raise NotFoundError("Customer not found")
        return Customer.from_dict(data)

    def create_customer(self, name: str, city: str, zipcode: str, date_of_birth: str,
                        status: str = "active", customer_id: Optional[str] = None) -> Customer:
        if status not in CUSTOMER_STATUSES:
            raise ValidationError("Status must be 'active' or 'inactive'")
        now = datetime.now(timezone.utc)
        customer = Customer(
            id=str(customer_id) if customer_id is not None else str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name,
            city=city,
            zipcode=zipcode,
            date_of_birth=date_of_birth,
            status=status,
        )
        self._call(self.storage.save, CUSTOMERS_TABLE, customer.id, customer.to_dict())
        return customer

    @staticmethod
    def _call(operation, *args):
        try:
            return operation(*args)
        except Exception as e:
            logger.error(f"Customer storage failure in {operation.__name__}: {e}", exc_info=True)
            raise UnexpectedError("Unexpected database error") from e


class AccountRepository:
    """Accounts and their transactions"""

    def __init__(self, storage: StorageInterface, customers: CustomerRepository):
        self.storage = storage
        self.customers = customers

    def open_account(self, customer_id: str, account_type: str,
                     amount: Union[str, int, float, Decimal]) -> Account:
        """Open an account for an existing customer with an opening deposit"""
        deposit = to_decimal(amount)
        if deposit < MINIMUM_OPENING_DEPOSIT:
            raise ValidationError("Initial deposit must be at least 5000.00")
        normalized_type = (account_type or "").strip().lower()
        if normalized_type not in ACCOUNT_TYPES:
            raise ValidationError("Account type must be 'saving' or 'checking'")

        customer = self.customers.get_customer(customer_id)

        now = datetime.now(timezone.utc)
        account = Account(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            customer_id=customer.id,
            account_type=normalized_type,
            balance=deposit,
        )
        self._call(self.storage.save, ACCOUNTS_TABLE, account.id, account.to_dict())
        logger.info(f"Opened {normalized_type} account {account.id} for customer {customer.id}")
        return account

    def list_accounts(self, customer_id: str) -> List[Account]:
        customer = self.customers.get_customer(customer_id)
        records = self._call(self.storage.find, ACCOUNTS_TABLE, {"customer_id": customer.id})
        return sorted((Account.from_dict(r) for r in records), key=lambda a: a.created_at)

    def get_account(self, customer_id: str, account_id: str) -> Account:
        """Account owned by a customer; other customers' accounts are reported as missing"""
        data = self._call(self.storage.load, ACCOUNTS_TABLE, str(account_id))
        if data is None or str(data.get("customer_id")) != str(customer_id):
            raise NotFoundError("Account not found")
        return Account.from_dict(data)

    def make_transaction(self, customer_id: str, account_id: str,
                         amount: Union[str, int, float, Decimal], transaction_type: str) -> Transaction:
        """Apply a deposit or withdrawal and record it"""
        value = to_decimal(amount)
        if value <= 0:
            raise ValidationError("Amount must be greater than zero")
        kind = (transaction_type or "").strip().lower()
        if kind not in (DEPOSIT, WITHDRAWAL):
            raise ValidationError("Transaction type must be 'deposit' or 'withdrawal'")

        with self.storage.atomic():
            account = self.get_account(customer_id, account_id)
            if kind == WITHDRAWAL and not account.can_withdraw(value):
                logger.warning(f"Insufficient balance for withdrawal on account {account.id}")
                raise ValidationError("Insufficient balance for withdrawal")

            now = datetime.now(timezone.utc)
            account.balance = account.balance + value if kind == DEPOSIT else account.balance - value
            account.updated_at = now
            transaction = Transaction(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                account_id=account.id,
                amount=value,
                transaction_type=kind,
                balance_after=account.balance,
            )
            self._call(self.storage.save, ACCOUNTS_TABLE, account.id, account.to_dict())
            self._call(self.storage.save, TRANSACTIONS_TABLE, transaction.id, transaction.to_dict())

        logger.info(f"Recorded {kind} of {value} on account {account.id}")
        return transaction

    @staticmethod
    def _call(operation, *args):
        try:
            return operation(*args)
        except Exception as e:
            logger.error(f"Account storage failure in {operation.__name__}: {e}", exc_info=True)
            raise UnexpectedError("Unexpected database error") from e


DEMO_CUSTOMERS = (
    ("42", "Alice Martins", "Lisbon", "1000-001", "1990-04-12", "active"),
    ("43", "Bruno Costa", "Porto", "4000-002", "1985-11-30", "active"),
)


def seed_demo_customers(customers: CustomerRepository) -> int:
    """Create the demo customers that do not exist yet; returns how many were added"""
    created = 0
    for customer_id, name, city, zipcode, date_of_birth, status in DEMO_CUSTOMERS:
        if not customers.storage.exists(CUSTOMERS_TABLE, customer_id):
            customers.create_customer(name, city, zipcode, date_of_birth, status, customer_id=customer_id)
            created += 1
    return created
