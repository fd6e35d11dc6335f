from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import StrEnum


class EntityKind(StrEnum):
    CONNECTION = "connection"
    ACCOUNT = "account"
    TRANSACTION = "transaction"
    INVESTMENT = "investment"
    INVESTMENT_TRANSACTION = "investment_transaction"
    LOAN = "loan"
    BILL = "bill"
    IDENTITY = "identity"


class ConnectionStatus(StrEnum):
    CREATED = "CREATED"
    UPDATING = "UPDATING"
    UPDATED = "UPDATED"
    LOGIN_ERROR = "LOGIN_ERROR"
    OUTDATED = "OUTDATED"
    WAITING_USER_INPUT = "WAITING_USER_INPUT"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value) -> "ConnectionStatus":
        # Aggregator adds statuses over time, they must never break a listing
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        return cls.UNKNOWN


class AccountKind(StrEnum):
    BANK = "BANK"
    CREDIT = "CREDIT"
    PAYMENT_ACCOUNT = "PAYMENT_ACCOUNT"


class TransactionKind(StrEnum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


# MARK: Connection / Account


@dataclass(frozen=True)
class Connection:
    id: str
    connector_id: str | None
    connector_name: str
    connector_image_url: str | None
    status: ConnectionStatus
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_updated_at: datetime | None = None


@dataclass(frozen=True)
class CreditInfo:
    credit_limit: Decimal | None = None
    available_credit_limit: Decimal | None = None


@dataclass(frozen=True)
class Account:
    id: str
    connection_id: str | None
    kind: AccountKind
    name: str
    currency_code: str | None
    subtype: str | None = None
    marketing_name: str | None = None
    number: str | None = None
    balance: Decimal | None = None
    owner: str | None = None
    credit_info: CreditInfo | None = None

    @property
    def is_credit(self) -> bool:
        return self.kind == AccountKind.CREDIT


# MARK: Leaf records


@dataclass(frozen=True)
class Transaction:
    id: str
    account_id: str | None
    date: datetime | None
    description: str
    amount: Decimal | None
    currency_code: str | None
    kind: TransactionKind
    description_raw: str | None = None
    balance_after: Decimal | None = None
    category: str | None = None
    status: str | None = None

    @property
    def display_amount(self) -> Decimal | None:
        """Amount signed by kind; the stored amount is left as received."""
        if self.amount is None:
            return None
        if self.kind == TransactionKind.DEBIT:
            return -abs(self.amount)
        return abs(self.amount)


@dataclass(frozen=True)
class Investment:
    id: str
    connection_id: str | None
    name: str
    currency_code: str | None
    account_id: str | None = None
    code: str | None = None
    type: str | None = None
    subtype: str | None = None
    number: str | None = None
    owner: str | None = None
    quantity: Decimal | None = None
    value: Decimal | None = None
    amount: Decimal | None = None
    balance: Decimal | None = None
    fees: Decimal | None = None


@dataclass(frozen=True)
class InvestmentTransaction:
    id: str
    investment_id: str | None
    date: datetime | None
    description: str
    currency_code: str | None
    type: str | None = None
    quantity: Decimal | None = None
    value: Decimal | None = None
    amount: Decimal | None = None
    fees: Decimal | None = None


@dataclass(frozen=True)
class Loan:
    id: str
    connection_id: str | None
    product_name: str
    currency_code: str | None
    account_id: str | None = None
    contract_number: str | None = None
    type: str | None = None
    subtype: str | None = None
    contracted_amount: Decimal | None = None
    outstanding_balance: Decimal | None = None
    interest_rate: Decimal | None = None
    cet: Decimal | None = None
    due_date: datetime | None = None
    installment_frequency: str | None = None
    installments_to_pay: int | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class CreditCardBill:
    id: str
    account_id: str | None
    due_date: datetime | None
    total_amount: Decimal | None
    currency_code: str | None
    minimum_payment: Decimal | None = None
    paid_amount: Decimal | None = None
    payment_date: datetime | None = None
    status: str | None = None


@dataclass(frozen=True)
class Identity:
    id: str
    connection_id: str | None
    full_name: str | None = None
    document: str | None = None
    document_type: str | None = None
    birth_date: datetime | None = None
    job_title: str | None = None
    emails: tuple[str, ...] = field(default_factory=tuple)
    phone_numbers: tuple[str, ...] = field(default_factory=tuple)


Record = (
    Connection
    | Account
    | Transaction
    | Investment
    | InvestmentTransaction
    | Loan
    | CreditCardBill
    | Identity
)


def parent_id(record: Record) -> str | None:
    """Foreign key of the record's owning entity, if the kind has one."""
    if isinstance(record, (Account, Investment, Loan, Identity)):
        return record.connection_id
    if isinstance(record, (Transaction, CreditCardBill)):
        return record.account_id
    if isinstance(record, InvestmentTransaction):
        return record.investment_id
    return None


def is_selectable(record: Record) -> bool:
    if isinstance(record, Connection):
        return bool(record.id)
    return bool(record.id) and bool(parent_id(record))
