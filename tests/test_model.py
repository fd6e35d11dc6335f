from decimal import Decimal

import pytest

from linkdash.exceptions import (
    InvalidTransitionError,
    LinkDashError,
    NotFoundError,
    SelectionRejected,
    TransportError,
)
from linkdash.model import (
    Account,
    AccountKind,
    Connection,
    ConnectionStatus,
    InvestmentTransaction,
    Transaction,
    TransactionKind,
    is_selectable,
    parent_id,
)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("UPDATED", ConnectionStatus.UPDATED),
        (" login_error ", ConnectionStatus.LOGIN_ERROR),
        ("MERGING", ConnectionStatus.UNKNOWN),
        (None, ConnectionStatus.UNKNOWN),
        (3, ConnectionStatus.UNKNOWN),
    ],
)
def test_connection_status_parse(raw, expected):
    assert ConnectionStatus.parse(raw) == expected


def test_parent_id():
    account = Account("a1", "conn1", AccountKind.BANK, "Conta", None)
    transaction = Transaction("t1", "a1", None, "", None, None, TransactionKind.CREDIT)
    trade = InvestmentTransaction("it1", "inv1", None, "", None)
    connection = Connection("conn1", None, "", None, ConnectionStatus.UNKNOWN)

    assert parent_id(account) == "conn1"
    assert parent_id(transaction) == "a1"
    assert parent_id(trade) == "inv1"
    assert parent_id(connection) is None


def test_is_selectable():
    assert is_selectable(Connection("conn1", None, "", None, ConnectionStatus.UNKNOWN))
    assert is_selectable(Account("a1", "conn1", AccountKind.BANK, "Conta", None))
    assert not is_selectable(Account("a1", None, AccountKind.BANK, "Conta", None))


def test_display_amount_without_amount():
    transaction = Transaction("t1", "a1", None, "", None, None, TransactionKind.DEBIT)

    assert transaction.display_amount is None


def test_credit_display_amount_is_positive():
    transaction = Transaction(
        "t1", "a1", None, "", Decimal("-3"), None, TransactionKind.CREDIT
    )

    assert transaction.display_amount == Decimal("3")


def test_exception_hierarchy():
    assert issubclass(NotFoundError, TransportError)
    assert issubclass(InvalidTransitionError, SelectionRejected)
    assert issubclass(TransportError, LinkDashError)
    assert NotFoundError("gone", 404).status_code == 404
