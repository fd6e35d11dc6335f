from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from enum import StrEnum

from linkdash.exceptions import InvalidTransitionError, SelectionRejected
from linkdash.ids import clean_id
from linkdash.logging import get_logger
from linkdash.model import Account, Connection, EntityKind
from linkdash.normalizer import ResponseNormalizer

logger = get_logger(__name__)


class NavigationLevel(StrEnum):
    BROWSING = "BROWSING"
    CONNECTION_SELECTED = "CONNECTION_SELECTED"
    ACCOUNT_SELECTED = "ACCOUNT_SELECTED"
    SELECTION_ERROR = "SELECTION_ERROR"


class ConnectionTab(StrEnum):
    ACCOUNTS = "ACCOUNTS"
    IDENTITY = "IDENTITY"


class LeafKind(StrEnum):
    TRANSACTIONS = "TRANSACTIONS"
    INVESTMENTS = "INVESTMENTS"
    LOANS = "LOANS"
    BILLS = "BILLS"


@dataclass(frozen=True)
class SelectionState:
    level: NavigationLevel = NavigationLevel.BROWSING
    connection: Connection | None = None
    account: Account | None = None
    tab: ConnectionTab = ConnectionTab.ACCOUNTS
    leaf: LeafKind = LeafKind.TRANSACTIONS
    error: SelectionRejected | None = None

    @property
    def connection_id(self) -> str | None:
        return self.connection.id if self.connection else None

    @property
    def account_id(self) -> str | None:
        return self.account.id if self.account else None


BROWSING = SelectionState()


class SelectionStateMachine:
    """
    Drill-down navigation: connection -> account -> leaf list.

    Every accepted change bumps ``generation``; fetches started under an older
    generation belong to a selection the user has already left.

    Usage:
        machine = SelectionStateMachine()
        machine.select_connection(connection)
        machine.select_account(account)
        machine.select_leaf(LeafKind.BILLS)
        machine.back()
    """

    def __init__(self, normalizer: ResponseNormalizer | None = None) -> None:
        self.normalizer = normalizer or ResponseNormalizer()
        self._state = BROWSING
        self._before_error = BROWSING
        self._generation = 0
        self._listeners: list[Callable[[SelectionState], None]] = []

    @property
    def state(self) -> SelectionState:
        return self._state

    @property
    def level(self) -> NavigationLevel:
        return self._state.level

    @property
    def generation(self) -> int:
        return self._generation

    def subscribe(self, callback: Callable[[SelectionState], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    # MARK: - Transitions

    def select_connection(self, record) -> SelectionState:
        connection = self._coerce(record, EntityKind.CONNECTION, Connection)
        if connection is None or not connection.id:
            self._reject("Connection has no identifier", record)

        return self._move(
            SelectionState(
                level=NavigationLevel.CONNECTION_SELECTED, connection=connection
            )
        )

    def select_account(self, record) -> SelectionState:
        base = self._base()
        if base.level not in (
            NavigationLevel.CONNECTION_SELECTED,
            NavigationLevel.ACCOUNT_SELECTED,
        ):
            raise InvalidTransitionError(
                f"Cannot select an account while {base.level}", record=record
            )

        account = self._coerce(record, EntityKind.ACCOUNT, Account)
        if account is None or not account.id:
            self._reject("Account has no identifier", record)
        if not account.connection_id:
            self._reject(f"Account {account.id} has no owning connection", record)
        if account.connection_id != base.connection_id:
            raise InvalidTransitionError(
                f"Account {account.id} belongs to connection {account.connection_id}, "
                f"not {base.connection_id}",
                record=record,
            )

        return self._move(
            replace(
                base,
                level=NavigationLevel.ACCOUNT_SELECTED,
                account=account,
                leaf=LeafKind.TRANSACTIONS,
                error=None,
            )
        )

    def select_tab(self, tab: ConnectionTab) -> SelectionState:
        if self.level != NavigationLevel.CONNECTION_SELECTED:
            raise InvalidTransitionError(f"Cannot switch tabs while {self.level}")
        return self._move(replace(self._state, tab=ConnectionTab(tab)))

    def select_leaf(self, leaf: LeafKind) -> SelectionState:
        if self.level != NavigationLevel.ACCOUNT_SELECTED:
            raise InvalidTransitionError(f"Cannot pick a leaf list while {self.level}")
        return self._move(replace(self._state, leaf=LeafKind(leaf)))

    def back(self) -> SelectionState:
        level = self.level
        if level == NavigationLevel.ACCOUNT_SELECTED:
            return self._move(
                replace(
                    self._state,
                    level=NavigationLevel.CONNECTION_SELECTED,
                    account=None,
                    leaf=LeafKind.TRANSACTIONS,
                )
            )
        if level == NavigationLevel.CONNECTION_SELECTED:
            return self._move(BROWSING)
        if level == NavigationLevel.SELECTION_ERROR:
            return self._move(self._before_error)
        return self._state

    def dismiss_error(self) -> SelectionState:
        if self.level != NavigationLevel.SELECTION_ERROR:
            return self._state
        return self._move(self._before_error)

    def reset(self) -> SelectionState:
        self._before_error = BROWSING
        return self._move(BROWSING)

    # MARK: - Internals

    def _coerce(self, record, kind: EntityKind, expected: type):
        if isinstance(record, expected):
            return record
        if isinstance(record, Mapping):
            # Raw rows go through the same path as fetched lists
            return self.normalizer.normalize_one(dict(record), kind)
        return None

    def _base(self) -> SelectionState:
        if self.level == NavigationLevel.SELECTION_ERROR:
            return self._before_error
        return self._state

    def _reject(self, message: str, record):
        error = SelectionRejected(message, record=record)
        base = self._base()
        self._before_error = base
        logger.warning("Selection rejected: %s", message)
        self._move(replace(base, level=NavigationLevel.SELECTION_ERROR, error=error))
        raise error

    def _move(self, state: SelectionState) -> SelectionState:
        self._state = state
        self._generation += 1
        for listener in list(self._listeners):
            listener(state)
        return state


def owns(state: SelectionState, connection_id: str, account_id: str | None = None) -> bool:
    """True when the current selection references the given connection or account."""
    connection_id = clean_id(connection_id)
    if connection_id and state.connection_id == connection_id:
        return True
    if account_id and state.account_id == clean_id(account_id):
        return True
    return False
