import json
from collections.abc import Callable
from contextlib import contextmanager
from dataclasses import asdict
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path

from sqlalchemy import MetaData, create_engine, delete, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from linkdash.datastore.base import MirrorStore
from linkdash.exceptions import PersistenceError
from linkdash.logging import get_logger
from linkdash.model import (
    Account,
    Connection,
    CreditCardBill,
    Identity,
    Investment,
    InvestmentTransaction,
    Loan,
    Transaction,
)

logger = get_logger(__name__)

SCHEMA_DIR = Path(__file__).parent / "schema"

# Parents before children
SCHEMA_FILES = (
    "connections.sql",
    "accounts.sql",
    "transactions.sql",
    "identities.sql",
    "investments.sql",
    "investment_transactions.sql",
    "loans.sql",
    "credit_card_bills.sql",
)


def _column_value(value):
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        # Stored as text so no precision is lost to REAL
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return json.dumps(list(value))
    return value


def _to_row(obj, renames: dict[str, str]) -> dict:
    return {
        renames.get(key, key): _column_value(value)
        for key, value in asdict(obj).items()
    }


def _connection_row(obj: Connection) -> dict:
    return _to_row(obj, {"id": "item_id"})


def _account_row(obj: Account) -> dict:
    row = _to_row(obj, {"id": "account_id", "connection_id": "item_id", "kind": "type"})
    credit = obj.credit_info
    row.pop("credit_info")
    row["credit_limit"] = _column_value(credit.credit_limit if credit else None)
    row["available_credit_limit"] = _column_value(
        credit.available_credit_limit if credit else None
    )
    return row


class Sqlite3(MirrorStore):
    def __init__(self, db_path: Path | str):
        if str(db_path) == ":memory:":
            # Fetches run on worker threads; they must all see the same database
            self.engine = create_engine(
                "sqlite://",
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            self.engine = create_engine(f"sqlite:///{db_path}", future=True)

        with self.engine.begin() as conn:
            import sqlite3

            conn: sqlite3.Connection = conn.connection.driver_connection
            for name in SCHEMA_FILES:
                conn.executescript((SCHEMA_DIR / name).read_text())

        self.meta = MetaData()
        self.meta.reflect(bind=self.engine)
        self.connections = self.meta.tables["connections"]
        self.accounts = self.meta.tables["accounts"]
        self.transactions = self.meta.tables["transactions"]
        self.identities = self.meta.tables["identities"]
        self.investments = self.meta.tables["investments"]
        self.investment_transactions = self.meta.tables["investment_transactions"]
        self.loans = self.meta.tables["loans"]
        self.credit_card_bills = self.meta.tables["credit_card_bills"]

    @contextmanager
    def _begin(self):
        try:
            with self.engine.begin() as conn:
                yield conn
        except SQLAlchemyError as e:
            logger.error("Mirror store operation failed: %s", e)
            raise PersistenceError(str(e)) from e

    def _upsert(self, table, rows: list[dict]):
        if not rows:
            return
        with self._begin() as conn:
            conn.execute(insert(table).prefix_with("OR REPLACE"), rows)

    def _fetch_all(self, query) -> list[dict]:
        with self._begin() as conn:
            return [dict(row._mapping) for row in conn.execute(query)]

    def _fetch_one(self, query) -> dict | None:
        with self._begin() as conn:
            row = conn.execute(query).first()
        return dict(row._mapping) if row is not None else None

    # -------- Connections --------

    def save_connection(self, obj: Connection):
        self._upsert(self.connections, [_connection_row(obj)])

    def select_connection(self, connection_id: str) -> dict | None:
        return self._fetch_one(
            select(self.connections).where(
                self.connections.c.item_id == connection_id
            )
        )

    def retrieve_connections(self) -> list[dict]:
        return self._fetch_all(
            select(self.connections).order_by(
                self.connections.c.connector_name, self.connections.c.item_id
            )
        )

    def delete_by_connection(
        self,
        connection_id: str,
        before_commit: Callable[[], list[str] | None] | None = None,
    ) -> list[str]:
        """
        Remove a connection and everything mirrored under it in one transaction.

        ``before_commit`` runs last, inside the transaction; if it raises,
        nothing is removed. Returns notes about data that was already absent.
        """
        warnings: list[str] = []

        with self._begin() as conn:
            account_ids = list(
                conn.execute(
                    select(self.accounts.c.account_id).where(
                        self.accounts.c.item_id == connection_id
                    )
                ).scalars()
            )
            investment_ids = list(
                conn.execute(
                    select(self.investments.c.investment_id).where(
                        self.investments.c.item_id == connection_id
                    )
                ).scalars()
            )

            if account_ids:
                conn.execute(
                    delete(self.transactions).where(
                        self.transactions.c.account_id.in_(account_ids)
                    )
                )
                conn.execute(
                    delete(self.credit_card_bills).where(
                        self.credit_card_bills.c.account_id.in_(account_ids)
                    )
                )
            else:
                warnings.append("account data was already absent")

            if investment_ids:
                conn.execute(
                    delete(self.investment_transactions).where(
                        self.investment_transactions.c.investment_id.in_(
                            investment_ids
                        )
                    )
                )

            conn.execute(
                delete(self.investments).where(
                    self.investments.c.item_id == connection_id
                )
            )
            conn.execute(delete(self.loans).where(self.loans.c.item_id == connection_id))

            removed = conn.execute(
                delete(self.identities).where(self.identities.c.item_id == connection_id)
            )
            if removed.rowcount == 0:
                warnings.append("identity data was already absent")

            conn.execute(
                delete(self.accounts).where(self.accounts.c.item_id == connection_id)
            )
            removed = conn.execute(
                delete(self.connections).where(
                    self.connections.c.item_id == connection_id
                )
            )
            if removed.rowcount == 0:
                warnings.append("connection was not in the local store")

            if before_commit is not None:
                warnings.extend(before_commit() or [])

        return warnings

    # -------- Accounts --------

    def save_accounts(self, objs: list[Account]):
        self._upsert(self.accounts, [_account_row(obj) for obj in objs])

    def retrieve_accounts(self, connection_id: str) -> list[dict]:
        return self._fetch_all(
            select(self.accounts)
            .where(self.accounts.c.item_id == connection_id)
            .order_by(self.accounts.c.type, self.accounts.c.name)
        )

    # -------- Transactions --------

    def save_transactions(self, objs: list[Transaction]):
        self._upsert(
            self.transactions,
            [_to_row(obj, {"id": "transaction_id", "kind": "type"}) for obj in objs],
        )

    def retrieve_transactions(
        self, account_id: str, limit: int = 100, offset: int = 0
    ) -> list[dict]:
        return self._fetch_all(
            select(self.transactions)
            .where(self.transactions.c.account_id == account_id)
            .order_by(
                self.transactions.c.date.desc(), self.transactions.c.transaction_id
            )
            .limit(limit)
            .offset(offset)
        )

    # -------- Identity --------

    def save_identity(self, obj: Identity):
        row = _to_row(obj, {"id": "identity_id", "connection_id": "item_id"})
        with self._begin() as conn:
            # One identity per connection, whatever id the aggregator gave it
            conn.execute(
                delete(self.identities).where(
                    self.identities.c.item_id == row["item_id"]
                )
            )
            conn.execute(insert(self.identities).prefix_with("OR REPLACE"), [row])

    def retrieve_identity(self, connection_id: str) -> dict | None:
        return self._fetch_one(
            select(self.identities).where(self.identities.c.item_id == connection_id)
        )

    # -------- Investments --------

    def save_investments(self, objs: list[Investment]):
        self._upsert(
            self.investments,
            [
                _to_row(obj, {"id": "investment_id", "connection_id": "item_id"})
                for obj in objs
            ],
        )

    def retrieve_investments(self, connection_id: str) -> list[dict]:
        return self._fetch_all(
            select(self.investments)
            .where(self.investments.c.item_id == connection_id)
            .order_by(self.investments.c.name)
        )

    def save_investment_transactions(self, objs: list[InvestmentTransaction]):
        self._upsert(
            self.investment_transactions,
            [_to_row(obj, {"id": "transaction_id"}) for obj in objs],
        )

    def retrieve_investment_transactions(
        self, investment_id: str, page: int = 1, page_size: int = 20
    ) -> list[dict]:
        table = self.investment_transactions
        return self._fetch_all(
            select(table)
            .where(table.c.investment_id == investment_id)
            .order_by(table.c.date.desc(), table.c.transaction_id)
            .limit(page_size)
            .offset((max(page, 1) - 1) * page_size)
        )

    # -------- Loans / Bills --------

    def save_loans(self, objs: list[Loan]):
        self._upsert(
            self.loans,
            [_to_row(obj, {"id": "loan_id", "connection_id": "item_id"}) for obj in objs],
        )

    def retrieve_loans(self, connection_id: str) -> list[dict]:
        return self._fetch_all(
            select(self.loans)
            .where(self.loans.c.item_id == connection_id)
            .order_by(self.loans.c.product_name)
        )

    def save_bills(self, objs: list[CreditCardBill]):
        self._upsert(
            self.credit_card_bills, [_to_row(obj, {"id": "bill_id"}) for obj in objs]
        )

    def retrieve_bills(self, account_id: str) -> list[dict]:
        return self._fetch_all(
            select(self.credit_card_bills)
            .where(self.credit_card_bills.c.account_id == account_id)
            .order_by(self.credit_card_bills.c.due_date.desc())
        )
