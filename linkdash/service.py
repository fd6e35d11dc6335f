# MARK: Imports
from collections.abc import Mapping
from dataclasses import replace
from enum import StrEnum

from linkdash.config import LinkDashConfig
from linkdash.datasource.base import AggregatorClient
from linkdash.datasource.model import ConnectToken, SessionFailure
from linkdash.datasource.pluggy_source import Pluggy
from linkdash.datastore.base import MirrorStore
from linkdash.datastore.db import Sqlite3
from linkdash.exceptions import IdentityMissingError
from linkdash.fetch import LeafView, ViewState, ViewStatus
from linkdash.ids import clean_id
from linkdash.lifecycle import (
    ConnectionLifecycleManager,
    DeletionResult,
    RefreshGeneration,
)
from linkdash.logging import get_logger, setup_logging
from linkdash.model import (
    Account,
    Connection,
    CreditCardBill,
    EntityKind,
    Identity,
    Investment,
    InvestmentTransaction,
    Loan,
    Transaction,
)
from linkdash.normalizer import ResponseNormalizer
from linkdash.pagination import PageRequest, PaginationController, PaginationStyle
from linkdash.selection import (
    ConnectionTab,
    LeafKind,
    NavigationLevel,
    SelectionState,
    SelectionStateMachine,
)

logger = get_logger(__name__)

# Largest page the aggregator serves; used when mirroring full histories
SYNC_PAGE_SIZE = 500

LEAF_KINDS = {
    LeafKind.TRANSACTIONS: EntityKind.TRANSACTION,
    LeafKind.INVESTMENTS: EntityKind.INVESTMENT,
    LeafKind.LOANS: EntityKind.LOAN,
    LeafKind.BILLS: EntityKind.BILL,
}

CONNECTION_OWNED = (
    EntityKind.ACCOUNT,
    EntityKind.IDENTITY,
    EntityKind.INVESTMENT,
    EntityKind.LOAN,
)
ACCOUNT_OWNED = (EntityKind.TRANSACTION, EntityKind.BILL)


class DataSource(StrEnum):
    MIRROR = "mirror"
    LIVE = "live"


def _with_parent(records: list, field_name: str, parent_id: str) -> list:
    # Upstream children sometimes omit the key of the parent they were fetched for
    return [
        record
        if getattr(record, field_name)
        else replace(record, **{field_name: parent_id})
        for record in records
    ]


def _mirror_offset(page: PageRequest) -> int:
    if page.style == PaginationStyle.OFFSET:
        return page.offset
    return (page.page - 1) * page.size


def _total_pages(payload) -> int | None:
    if not isinstance(payload, Mapping):
        return None
    total = payload.get("totalPages")
    if isinstance(total, int) and not isinstance(total, bool):
        return total
    return None


# MARK: Service Layer
class Service:
    def __init__(
        self,
        store: MirrorStore,
        client: AggregatorClient | None = None,
        config: LinkDashConfig | None = None,
    ):
        self.config = config or LinkDashConfig()
        self.store = store
        self.client = client if client is not None else Pluggy(self.config.pluggy)
        self.source = DataSource(self.config.data_source)

        self.normalizer = ResponseNormalizer()
        self.refresh = RefreshGeneration()
        self.selection = SelectionStateMachine(self.normalizer)
        self.lifecycle = ConnectionLifecycleManager(
            self.client, self.store, self.selection, self.refresh, self.normalizer
        )

        page_sizes = self.config.pagination
        self.views: dict[EntityKind, LeafView] = {
            EntityKind.CONNECTION: LeafView(
                EntityKind.CONNECTION, self.fetch_connections, owned=False
            ),
            EntityKind.ACCOUNT: LeafView(EntityKind.ACCOUNT, self.fetch_accounts),
            EntityKind.IDENTITY: LeafView(EntityKind.IDENTITY, self.fetch_identity),
            EntityKind.TRANSACTION: LeafView(
                EntityKind.TRANSACTION,
                self.fetch_transactions,
                PaginationController.by_offset(page_sizes.transactions_page_size),
            ),
            EntityKind.INVESTMENT: LeafView(
                EntityKind.INVESTMENT, self.fetch_investments
            ),
            EntityKind.INVESTMENT_TRANSACTION: LeafView(
                EntityKind.INVESTMENT_TRANSACTION,
                self.fetch_investment_transactions,
                PaginationController.by_page(
                    page_sizes.investment_transactions_page_size
                ),
            ),
            EntityKind.LOAN: LeafView(EntityKind.LOAN, self.fetch_loans),
            EntityKind.BILL: LeafView(EntityKind.BILL, self.fetch_bills),
        }
        for kind, view in self.views.items():
            view.bind(self.refresh)
            if kind != EntityKind.CONNECTION:
                view.follow(self.selection)

        self._unsubscribe = self.selection.subscribe(self._on_selection)

    @classmethod
    def from_config(cls, config: LinkDashConfig | None = None) -> "Service":
        config = config or LinkDashConfig.from_env()
        setup_logging(config.log_level, config.log_format)
        return cls(Sqlite3(config.store.database_path), config=config)

    def close(self):
        """Tear down process-wide state (logout)."""
        self._unsubscribe()
        self.selection.reset()
        self.refresh.reset()
        self.client.close()

    # MARK: - Raw fetchers (owner_id, page) -> payload

    def fetch_connections(self, _owner_id=None, _page=None):
        rows = self.store.retrieve_connections()
        if self.source == DataSource.LIVE:
            # The mirror's connection table is the registry of linked items
            return self.client.list_connections([row["item_id"] for row in rows])
        return rows

    def fetch_accounts(self, connection_id: str, _page=None):
        if self.source == DataSource.LIVE:
            return self.client.get_accounts(connection_id)
        return self.store.retrieve_accounts(connection_id)

    def fetch_identity(self, connection_id: str, _page=None):
        if self.source == DataSource.LIVE:
            payload = self.client.get_identity(connection_id)
        else:
            payload = self.store.retrieve_identity(connection_id)
        # No identity on file is an empty list, not a shape problem
        return [] if payload is None else payload

    def fetch_transactions(self, account_id: str, page: PageRequest | None = None):
        page = page or PageRequest(
            PaginationStyle.OFFSET, self.config.pagination.transactions_page_size
        )
        if self.source == DataSource.LIVE:
            return self.client.get_transactions(account_id, page)
        return self.store.retrieve_transactions(
            account_id, limit=page.size, offset=_mirror_offset(page)
        )

    def fetch_investments(self, connection_id: str, _page=None):
        if self.source == DataSource.LIVE:
            return self.client.get_investments(connection_id)
        return self.store.retrieve_investments(connection_id)

    def fetch_investment_transactions(
        self, investment_id: str, page: PageRequest | None = None
    ):
        page = page or PageRequest(
            PaginationStyle.PAGE,
            self.config.pagination.investment_transactions_page_size,
        )
        if self.source == DataSource.LIVE:
            return self.client.get_investment_transactions(investment_id, page)
        return self.store.retrieve_investment_transactions(
            investment_id, page=_mirror_offset(page) // page.size + 1, page_size=page.size
        )

    def fetch_loans(self, connection_id: str, _page=None):
        if self.source == DataSource.LIVE:
            return self.client.get_loans(connection_id)
        return self.store.retrieve_loans(connection_id)

    def fetch_bills(self, account_id: str, _page=None):
        if self.source == DataSource.LIVE:
            return self.client.get_bills(account_id)
        return self.store.retrieve_bills(account_id)

    # MARK: - Reads

    def list_connections(self) -> list[Connection]:
        return self.normalizer.normalize(self.fetch_connections(), EntityKind.CONNECTION)

    def get_accounts(self, connection_id: str) -> list[Account]:
        return self.normalizer.normalize(
            self.fetch_accounts(connection_id), EntityKind.ACCOUNT
        )

    def get_identity(self, connection_id: str) -> Identity | None:
        return self.normalizer.normalize_one(
            self.fetch_identity(connection_id), EntityKind.IDENTITY
        )

    def get_transactions(
        self,
        account_id: str,
        page: PageRequest | None = None,
        date_from: str | None = None,
        date_to: str | None = None,
    ) -> list[Transaction]:
        if self.source == DataSource.LIVE and (date_from or date_to):
            payload = self.client.get_transactions(account_id, page, date_from, date_to)
        else:
            payload = self.fetch_transactions(account_id, page)
        return self.normalizer.normalize(payload, EntityKind.TRANSACTION)

    def get_investments(self, connection_id: str) -> list[Investment]:
        return self.normalizer.normalize(
            self.fetch_investments(connection_id), EntityKind.INVESTMENT
        )

    def get_investment_transactions(
        self, investment_id: str, page: PageRequest | None = None
    ) -> list[InvestmentTransaction]:
        return self.normalizer.normalize(
            self.fetch_investment_transactions(investment_id, page),
            EntityKind.INVESTMENT_TRANSACTION,
        )

    def get_loans(self, connection_id: str) -> list[Loan]:
        return self.normalizer.normalize(self.fetch_loans(connection_id), EntityKind.LOAN)

    def get_bills(self, account_id: str) -> list[CreditCardBill]:
        return self.normalizer.normalize(self.fetch_bills(account_id), EntityKind.BILL)

    # MARK: - Navigation

    @staticmethod
    def owner_for(kind: EntityKind, state: SelectionState) -> str | None:
        if kind in CONNECTION_OWNED:
            return state.connection_id
        if kind in ACCOUNT_OWNED:
            return state.account_id
        return None

    def _on_selection(self, state: SelectionState):
        for kind, view in self.views.items():
            if kind == EntityKind.CONNECTION or view.owner_id is None:
                continue
            if kind == EntityKind.INVESTMENT_TRANSACTION:
                keep = (
                    state.level == NavigationLevel.ACCOUNT_SELECTED
                    and state.leaf == LeafKind.INVESTMENTS
                )
            else:
                keep = view.owner_id == self.owner_for(kind, state)
            if not keep:
                view.invalidate()

    def current_view(self) -> tuple[LeafView | None, str | None]:
        """The view the selection points at, with the id that owns it."""
        state = self.selection.state
        if state.level == NavigationLevel.BROWSING:
            return self.views[EntityKind.CONNECTION], None
        if state.level == NavigationLevel.CONNECTION_SELECTED:
            kind = (
                EntityKind.IDENTITY
                if state.tab == ConnectionTab.IDENTITY
                else EntityKind.ACCOUNT
            )
            return self.views[kind], state.connection_id
        if state.level == NavigationLevel.ACCOUNT_SELECTED:
            kind = LEAF_KINDS[state.leaf]
            return self.views[kind], self.owner_for(kind, state)
        return None, None

    async def load_current(self) -> ViewState:
        """
        Load the list for the current selection.

        A view already holding this owner's data is only refetched when the
        refresh generation moved since it loaded.
        """
        state = self.selection.state
        view, owner_id = self.current_view()
        if view is None:
            return ViewState(ViewStatus.ERROR, error=str(state.error))

        if (
            view.state.status == ViewStatus.READY
            and view.owner_id == owner_id
            and not view.stale
        ):
            return view.state
        return await view.load(owner_id)

    async def open_investment(self, investment_id: str) -> ViewState:
        return await self.views[EntityKind.INVESTMENT_TRANSACTION].load(investment_id)

    # MARK: - Connection Lifecycle

    def create_connect_token(self, item_id: str | None = None) -> ConnectToken:
        return self.client.create_connect_token(item_id)

    def on_session_success(self, payload) -> Connection:
        return self.lifecycle.create(payload)

    def on_session_error(self, payload) -> SessionFailure:
        return self.lifecycle.handle_session_error(payload)

    def delete_connection(self, connection_id: str) -> DeletionResult:
        return self.lifecycle.delete(connection_id)

    def refresh_connection(self, connection_id: str) -> Connection:
        return self.lifecycle.refresh_connection(connection_id)

    # MARK: - Mirror Sync

    def _pull_pages(self, fetch, owner_id: str, kind: EntityKind) -> list:
        controller = PaginationController.by_page(SYNC_PAGE_SIZE, owner_id)
        pulled, seen = [], set()
        while True:
            payload = fetch(owner_id, controller.current)
            records = self.normalizer.normalize(payload, kind)
            fresh = [record for record in records if record.id not in seen]
            pulled += fresh
            seen.update(record.id for record in fresh)

            total_pages = _total_pages(payload)
            if total_pages is not None and controller.current.page >= total_pages:
                return pulled
            # A short page is the last one; a page of repeats means paging is ignored
            if len(records) < SYNC_PAGE_SIZE or not fresh:
                return pulled
            controller.load_more()

    def sync_connection(self, connection_id: str) -> dict[str, int]:
        """Copy a connection and everything under it from the aggregator into the mirror."""
        connection_id = clean_id(connection_id)
        if not connection_id:
            raise IdentityMissingError(
                "Cannot sync a connection without an identifier",
                kind=EntityKind.CONNECTION,
            )

        accounts = _with_parent(
            self.normalizer.normalize(self.client.get_accounts(connection_id), EntityKind.ACCOUNT),
            "connection_id",
            connection_id,
        )
        self.store.save_accounts(accounts)

        transactions, bills = [], []
        for account in accounts:
            transactions += _with_parent(
                self._pull_pages(
                    self.client.get_transactions, account.id, EntityKind.TRANSACTION
                ),
                "account_id",
                account.id,
            )
            if account.is_credit:
                bills += _with_parent(
                    self.normalizer.normalize(self.client.get_bills(account.id), EntityKind.BILL),
                    "account_id",
                    account.id,
                )
        self.store.save_transactions(transactions)
        self.store.save_bills(bills)

        identity = self.normalizer.normalize_one(
            self.client.get_identity(connection_id) or [], EntityKind.IDENTITY
        )
        if identity is not None:
            self.store.save_identity(
                _with_parent([identity], "connection_id", connection_id)[0]
            )

        investments = _with_parent(
            self.normalizer.normalize(
                self.client.get_investments(connection_id), EntityKind.INVESTMENT
            ),
            "connection_id",
            connection_id,
        )
        self.store.save_investments(investments)

        investment_transactions = []
        for investment in investments:
            investment_transactions += _with_parent(
                self._pull_pages(
                    self.client.get_investment_transactions,
                    investment.id,
                    EntityKind.INVESTMENT_TRANSACTION,
                ),
                "investment_id",
                investment.id,
            )
        self.store.save_investment_transactions(investment_transactions)

        loans = _with_parent(
            self.normalizer.normalize(self.client.get_loans(connection_id), EntityKind.LOAN),
            "connection_id",
            connection_id,
        )
        self.store.save_loans(loans)

        # Connection row last; recording it bumps the refresh generation
        self.lifecycle.record(self.client.get_connection(connection_id))

        counts = {
            "accounts": len(accounts),
            "transactions": len(transactions),
            "bills": len(bills),
            "identity": 0 if identity is None else 1,
            "investments": len(investments),
            "investment_transactions": len(investment_transactions),
            "loans": len(loans),
        }
        logger.info("Synced connection %s: %s", connection_id, counts)
        return counts
