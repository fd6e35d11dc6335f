from collections.abc import Callable
from dataclasses import dataclass

from pydantic import ValidationError

from linkdash.datasource.base import AggregatorClient
from linkdash.datasource.model import SessionFailure, parse_session_result
from linkdash.datastore.base import MirrorStore
from linkdash.exceptions import (
    DeletionFailedError,
    IdentityMissingError,
    NotFoundError,
    PersistenceError,
    SessionFailedError,
    TransportError,
)
from linkdash.ids import clean_id
from linkdash.logging import get_logger
from linkdash.model import Connection, EntityKind
from linkdash.normalizer import ResponseNormalizer
from linkdash.selection import SelectionStateMachine, owns

logger = get_logger(__name__)


class RefreshGeneration:
    """
    Counter that moves forward whenever the set of connections changes.

    Views remember the value they last loaded under and reload once it moves.
    Only ``ConnectionLifecycleManager`` bumps it.
    """

    def __init__(self) -> None:
        self._value = 0
        self._listeners: list[Callable[[int], None]] = []

    @property
    def value(self) -> int:
        return self._value

    def bump(self) -> int:
        self._value += 1
        for listener in list(self._listeners):
            listener(self._value)
        return self._value

    def subscribe(self, callback: Callable[[int], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def reset(self) -> None:
        self._value = 0
        self._listeners.clear()


@dataclass(frozen=True)
class DeletionResult:
    connection_id: str
    warnings: tuple[str, ...] = ()


class ConnectionLifecycleManager:
    def __init__(
        self,
        client: AggregatorClient,
        store: MirrorStore,
        selection: SelectionStateMachine,
        refresh: RefreshGeneration,
        normalizer: ResponseNormalizer | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.selection = selection
        self.refresh = refresh
        self.normalizer = normalizer or ResponseNormalizer()

    def record(self, payload) -> Connection:
        """Store an aggregator item payload as a connection and signal the views."""
        connection = self.normalizer.normalize_one(payload, EntityKind.CONNECTION)
        if connection is None:
            raise IdentityMissingError(
                "Connection payload has no identifier",
                kind=EntityKind.CONNECTION,
                record=payload,
            )

        try:
            self.store.save_connection(connection)
        except PersistenceError:
            # Counter stays put, nothing changed for the views
            logger.error("Could not persist connection %s", connection.id)
            raise
        self.refresh.bump()
        return connection

    def create(self, session_result) -> Connection:
        """Record the connection a successful linking session produced."""
        try:
            result = parse_session_result(session_result)
        except ValidationError as e:
            raise SessionFailedError(f"Unreadable session result: {e}") from e

        if isinstance(result, SessionFailure):
            raise SessionFailedError(result.message, result.partial_connection_id)

        connection = self.record(result.item_payload())
        logger.info(
            "Connection %s created (%s, %s)",
            connection.id,
            connection.connector_name,
            connection.status,
        )
        return connection

    def handle_session_error(self, payload) -> SessionFailure:
        try:
            failure = parse_session_result(payload)
        except ValidationError:
            failure = SessionFailure()
        if not isinstance(failure, SessionFailure):
            failure = SessionFailure(message="Unexpected success payload on error path")

        logger.error(
            "Linking session failed: %s (partial connection %s)",
            failure.message,
            failure.partial_connection_id,
        )
        return failure

    def refresh_connection(self, connection_id: str) -> Connection:
        """Ask the aggregator to update a connection and store what it returns."""
        connection_id = clean_id(connection_id)
        if not connection_id:
            raise IdentityMissingError(
                "Cannot refresh a connection without an identifier",
                kind=EntityKind.CONNECTION,
            )

        payload = self.client.update_connection(connection_id)
        connection = self.record(payload)
        logger.info("Connection %s refreshed (%s)", connection.id, connection.status)
        return connection

    def delete(self, connection_id: str) -> DeletionResult:
        """
        Remove a connection upstream and from the mirror.

        The upstream call runs inside the mirror transaction, so a failure on
        either side leaves both untouched. A connection the aggregator no
        longer knows about is removed locally with a warning.
        """
        connection_id = clean_id(connection_id)
        if not connection_id:
            raise IdentityMissingError(
                "Cannot delete a connection without an identifier",
                kind=EntityKind.CONNECTION,
            )

        if owns(self.selection.state, connection_id):
            self.selection.reset()

        def delete_upstream() -> list[str]:
            try:
                self.client.delete_connection(connection_id)
            except NotFoundError:
                return ["connection was already absent upstream"]
            return []

        try:
            warnings = self.store.delete_by_connection(
                connection_id, before_commit=delete_upstream
            )
        except (TransportError, PersistenceError) as e:
            logger.error("Failed to delete connection %s: %s", connection_id, e)
            raise DeletionFailedError(
                f"Connection {connection_id} was not deleted: {e}"
            ) from e

        self.refresh.bump()
        for warning in warnings:
            logger.warning("Connection %s deleted: %s", connection_id, warning)
        logger.info("Connection %s deleted", connection_id)
        return DeletionResult(connection_id, tuple(warnings))
