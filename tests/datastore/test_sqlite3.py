from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import select

from linkdash.datastore.db import Sqlite3
from linkdash.model import (
    Account,
    AccountKind,
    Connection,
    ConnectionStatus,
    CreditCardBill,
    CreditInfo,
    EntityKind,
    Identity,
    Investment,
    InvestmentTransaction,
    Loan,
    Transaction,
    TransactionKind,
)
from linkdash.normalizer import normalize


@pytest.fixture
def db():
    db = Sqlite3(":memory:")
    yield db
    db.engine.dispose()


def make_connection(id="conn1", name="Banco X"):
    return Connection(
        id,
        "201",
        name,
        "x.png",
        ConnectionStatus.UPDATED,
        created_at=datetime(2024, 1, 1, 10, 0),
    )


def make_account(id="a1", connection_id="conn1", kind=AccountKind.BANK):
    return Account(
        id,
        connection_id,
        kind,
        "Conta",
        "BRL",
        balance=Decimal("1234.56"),
        credit_info=CreditInfo(Decimal("5000"), Decimal("0"))
        if kind == AccountKind.CREDIT
        else None,
    )


def make_transaction(id, account_id="a1", day=1, amount="-10.00"):
    return Transaction(
        id,
        account_id,
        datetime(2024, 3, day),
        f"Compra {id}",
        Decimal(amount),
        "BRL",
        TransactionKind.DEBIT,
    )


def seed(db: Sqlite3):
    db.save_connection(make_connection())
    db.save_accounts([make_account(), make_account("a2", kind=AccountKind.CREDIT)])
    db.save_transactions(
        [make_transaction("t1", day=1), make_transaction("t2", day=2)]
    )
    db.save_bills(
        [CreditCardBill("b1", "a2", datetime(2024, 4, 10), Decimal("900"), "BRL")]
    )
    db.save_investments([Investment("inv1", "conn1", "CDB", "BRL")])
    db.save_investment_transactions(
        [InvestmentTransaction("it1", "inv1", datetime(2024, 2, 1), "Aplicacao", "BRL")]
    )
    db.save_loans([Loan("l1", "conn1", "Consignado", "BRL")])
    db.save_identity(
        Identity("i1", "conn1", full_name="Ana", emails=("ana@example.com",))
    )


# --------------------
# Connection APIs
# --------------------


def test_save_and_select_connection(db: Sqlite3):
    db.save_connection(make_connection())

    row = db.select_connection("conn1")

    assert row["item_id"] == "conn1"
    assert row["status"] == "UPDATED"
    assert row["created_at"] == datetime(2024, 1, 1, 10, 0).isoformat()


def test_save_connection_replaces(db: Sqlite3):
    db.save_connection(make_connection())
    db.save_connection(make_connection(name="Banco Y"))

    rows = db.retrieve_connections()

    assert len(rows) == 1
    assert rows[0]["connector_name"] == "Banco Y"


def test_connection_rows_normalize_back(db: Sqlite3):
    db.save_connection(make_connection())

    connection = normalize(db.retrieve_connections(), EntityKind.CONNECTION)[0]

    assert connection == make_connection()


def test_select_missing_connection(db: Sqlite3):
    assert db.select_connection("nope") is None


# --------------------
# Account / Transaction APIs
# --------------------


def test_money_is_stored_as_text(db: Sqlite3):
    db.save_connection(make_connection())
    db.save_accounts([make_account()])

    with db.engine.begin() as conn:
        row = conn.execute(select(db.accounts)).first()

    assert row.balance == "1234.56"
    assert row.item_id == "conn1"


def test_credit_info_round_trips(db: Sqlite3):
    db.save_accounts([make_account("a2", kind=AccountKind.CREDIT)])

    account = normalize(db.retrieve_accounts("conn1"), EntityKind.ACCOUNT)[0]

    assert account.credit_info == CreditInfo(Decimal("5000"), Decimal("0"))


def test_retrieve_transactions_pages_newest_first(db: Sqlite3):
    db.save_transactions([make_transaction(f"t{day}", day=day) for day in range(1, 6)])

    first = db.retrieve_transactions("a1", limit=2, offset=0)
    second = db.retrieve_transactions("a1", limit=2, offset=2)

    assert [row["transaction_id"] for row in first] == ["t5", "t4"]
    assert [row["transaction_id"] for row in second] == ["t3", "t2"]


def test_retrieve_transactions_scoped_to_account(db: Sqlite3):
    db.save_transactions([make_transaction("t1"), make_transaction("t2", "a2")])

    assert len(db.retrieve_transactions("a1")) == 1


def test_investment_transactions_by_page(db: Sqlite3):
    db.save_investment_transactions(
        [
            InvestmentTransaction(f"it{day}", "inv1", datetime(2024, 1, day), "", "BRL")
            for day in range(1, 4)
        ]
    )

    page = db.retrieve_investment_transactions("inv1", page=2, page_size=2)

    assert [row["transaction_id"] for row in page] == ["it1"]


# --------------------
# Identity APIs
# --------------------


def test_identity_round_trip(db: Sqlite3):
    db.save_identity(Identity("i1", "conn1", full_name="Ana", emails=("a@b.c",)))

    identity = normalize(db.retrieve_identity("conn1"), EntityKind.IDENTITY)[0]

    assert identity.full_name == "Ana"
    assert identity.emails == ("a@b.c",)


def test_one_identity_per_connection(db: Sqlite3):
    db.save_identity(Identity("i1", "conn1", full_name="Old"))
    db.save_identity(Identity("i2", "conn1", full_name="New"))

    assert db.retrieve_identity("conn1")["full_name"] == "New"


# --------------------
# Cascading delete
# --------------------


def test_delete_by_connection_removes_everything(db: Sqlite3):
    seed(db)
    db.save_connection(make_connection("conn2"))
    db.save_accounts([make_account("a9", "conn2")])

    warnings = db.delete_by_connection("conn1")

    assert warnings == []
    assert db.select_connection("conn1") is None
    assert db.retrieve_accounts("conn1") == []
    assert db.retrieve_transactions("a1") == []
    assert db.retrieve_bills("a2") == []
    assert db.retrieve_investments("conn1") == []
    assert db.retrieve_investment_transactions("inv1") == []
    assert db.retrieve_loans("conn1") == []
    assert db.retrieve_identity("conn1") is None
    assert len(db.retrieve_accounts("conn2")) == 1


def test_delete_reports_absent_data(db: Sqlite3):
    db.save_connection(make_connection())

    warnings = db.delete_by_connection("conn1")

    assert "identity data was already absent" in warnings
    assert "account data was already absent" in warnings


def test_delete_collects_before_commit_warnings(db: Sqlite3):
    seed(db)

    warnings = db.delete_by_connection("conn1", before_commit=lambda: ["upstream note"])

    assert warnings == ["upstream note"]


def test_before_commit_failure_rolls_back(db: Sqlite3):
    seed(db)

    def fail():
        raise RuntimeError("upstream down")

    with pytest.raises(RuntimeError):
        db.delete_by_connection("conn1", before_commit=fail)

    assert db.select_connection("conn1") is not None
    assert len(db.retrieve_transactions("a1")) == 2
    assert db.retrieve_identity("conn1") is not None
