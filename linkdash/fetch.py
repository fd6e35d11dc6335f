import asyncio
import inspect
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from linkdash.exceptions import PersistenceError, TransportError
from linkdash.ids import clean_id
from linkdash.logging import get_logger
from linkdash.model import EntityKind, Record, is_selectable
from linkdash.normalizer import ResponseNormalizer
from linkdash.pagination import PageRequest, PaginationController

logger = get_logger(__name__)

# (owner_id, page) -> raw payload, or an awaitable of one
Fetcher = Callable[[str, PageRequest | None], Any]


class ViewStatus(StrEnum):
    IDLE = "IDLE"
    LOADING = "LOADING"
    READY = "READY"
    ERROR = "ERROR"


@dataclass(frozen=True)
class FetchToken:
    generation: int
    owner_id: str | None
    page: PageRequest | None = None
    selection: int | None = None


@dataclass(frozen=True)
class ViewState:
    status: ViewStatus = ViewStatus.IDLE
    owner_id: str | None = None
    records: tuple = ()
    error: str | None = None
    warnings: tuple[str, ...] = ()
    page: PageRequest | None = None
    dropped: int = 0

    @property
    def selectable(self) -> tuple:
        return tuple(record for record in self.records if is_selectable(record))


@dataclass
class _RefreshBinding:
    source: Any
    seen: int = field(default=0)


class LeafView:
    """
    One list view (accounts, transactions, bills, ...) owned by an identifier.

    Each fetch gets a ``FetchToken``; a result is applied only while its token
    is the latest one, so a slow response for account X can never overwrite
    the list after the view moved on to account Y.
    """

    def __init__(
        self,
        kind: EntityKind,
        fetcher: Fetcher,
        pagination: PaginationController | None = None,
        owned: bool = True,
    ) -> None:
        self.kind = EntityKind(kind)
        self.fetcher = fetcher
        self.pagination = pagination
        # Unowned views (the connection list) load without a selection
        self.owned = owned
        self._generation = 0
        self._owner_id: str | None = None
        self._state = ViewState()
        self._refresh: _RefreshBinding | None = None
        self._selection = None

    @property
    def state(self) -> ViewState:
        return self._state

    @property
    def records(self) -> tuple:
        return self._state.records

    @property
    def owner_id(self) -> str | None:
        return self._owner_id

    @property
    def stale(self) -> bool:
        """True when the bound refresh generation moved since the last fetch began."""
        if self._refresh is None:
            return False
        return self._refresh.source.value != self._refresh.seen

    def bind(self, refresh) -> None:
        self._refresh = _RefreshBinding(refresh, refresh.value)

    def follow(self, selection) -> None:
        """Tie tokens to ``selection.generation`` so any navigation discards in-flight results."""
        self._selection = selection

    # MARK: - Tokens

    def begin(self, owner_id: str | None) -> FetchToken:
        owner_id = clean_id(owner_id)
        if owner_id != self._owner_id:
            self._owner_id = owner_id
            if self.pagination is not None:
                self.pagination.set_owner(owner_id)
        if self._refresh is not None:
            self._refresh.seen = self._refresh.source.value

        self._generation += 1
        page = self.pagination.current if self.pagination is not None else None
        self._state = ViewState(ViewStatus.LOADING, owner_id, page=page)
        selection = self._selection.generation if self._selection is not None else None
        return FetchToken(self._generation, owner_id, page, selection)

    def is_current(self, token: FetchToken) -> bool:
        if token.generation != self._generation:
            return False
        return self._selection is None or token.selection == self._selection.generation

    def apply(self, token: FetchToken, payload) -> bool:
        if not self.is_current(token):
            logger.debug(
                "Discarding stale %s result for %s (generation %d, now %d)",
                self.kind,
                token.owner_id,
                token.generation,
                self._generation,
            )
            return False

        normalizer = ResponseNormalizer()
        records = normalizer.normalize(payload, self.kind)
        self._state = ViewState(
            ViewStatus.READY,
            token.owner_id,
            tuple(records),
            warnings=tuple(str(warning) for warning in normalizer.warnings),
            page=token.page,
            dropped=len(normalizer.dropped),
        )
        return True

    def fail(self, token: FetchToken, error: Exception) -> bool:
        if not self.is_current(token):
            return False
        self._state = ViewState(
            ViewStatus.ERROR, token.owner_id, error=str(error), page=token.page
        )
        return True

    def invalidate(self) -> None:
        """Drop whatever is in flight; used when navigating away."""
        self._generation += 1
        self._owner_id = None
        self._state = ViewState()

    # MARK: - Loading

    async def load(self, owner_id: str | None = None) -> ViewState:
        owner_id = clean_id(owner_id) if owner_id is not None else self._owner_id
        if self.owned and not owner_id:
            # Nothing selected, nothing to fetch
            self.invalidate()
            self._state = ViewState(ViewStatus.READY)
            return self._state

        token = self.begin(owner_id)
        try:
            if inspect.iscoroutinefunction(self.fetcher):
                result = await self.fetcher(owner_id, token.page)
            else:
                # httpx.Client and SQLAlchemy block; keep them off the event loop
                result = await asyncio.to_thread(self.fetcher, owner_id, token.page)
                if inspect.isawaitable(result):
                    result = await result
        except (TransportError, PersistenceError) as e:
            logger.error("Failed to load %s for %s: %s", self.kind, owner_id, e)
            self.fail(token, e)
            return self._state

        self.apply(token, result)
        return self._state

    async def reload(self) -> ViewState:
        return await self.load(self._owner_id)

    async def ensure_fresh(self) -> ViewState:
        if self.stale:
            return await self.reload()
        return self._state

    async def load_more(self) -> ViewState:
        if self.pagination is None:
            return self._state
        self.pagination.load_more()
        return await self.reload()

    async def load_previous(self) -> ViewState:
        if self.pagination is None or not self.pagination.has_previous:
            return self._state
        self.pagination.load_previous()
        return await self.reload()
