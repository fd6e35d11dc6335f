import pytest

from linkdash.exceptions import InvalidTransitionError, SelectionRejected
from linkdash.model import Account, AccountKind, Connection, ConnectionStatus
from linkdash.selection import (
    ConnectionTab,
    LeafKind,
    NavigationLevel,
    SelectionStateMachine,
    owns,
)


def make_connection(id="item-1"):
    return Connection(id, "201", "Banco X", None, ConnectionStatus.UPDATED)


def make_account(id="a1", connection_id="item-1"):
    return Account(id, connection_id, AccountKind.BANK, "Conta", "BRL")


@pytest.fixture
def machine():
    return SelectionStateMachine()


def test_starts_browsing(machine):
    assert machine.level == NavigationLevel.BROWSING
    assert machine.state.connection is None
    assert machine.generation == 0


class TestSelectConnection:
    def test_moves_to_connection_selected(self, machine):
        state = machine.select_connection(make_connection())

        assert state.level == NavigationLevel.CONNECTION_SELECTED
        assert state.connection_id == "item-1"
        assert state.tab == ConnectionTab.ACCOUNTS

    def test_accepts_raw_rows(self, machine):
        machine.select_connection({"id": "item-2", "connector": {"name": "Y"}})

        assert machine.state.connection_id == "item-2"
        assert machine.state.connection.connector_name == "Y"

    def test_missing_id_moves_to_selection_error(self, machine):
        with pytest.raises(SelectionRejected) as exc:
            machine.select_connection({})

        assert machine.level == NavigationLevel.SELECTION_ERROR
        assert machine.level != NavigationLevel.CONNECTION_SELECTED
        assert machine.state.error is exc.value
        assert exc.value.record == {}

    def test_clears_prior_account(self, machine):
        machine.select_connection(make_connection())
        machine.select_account(make_account())

        state = machine.select_connection(make_connection("item-2"))

        assert state.account is None
        assert state.level == NavigationLevel.CONNECTION_SELECTED


class TestSelectAccount:
    def test_rejected_while_browsing(self, machine):
        with pytest.raises(InvalidTransitionError):
            machine.select_account(make_account())

        assert machine.level == NavigationLevel.BROWSING
        assert machine.generation == 0

    def test_moves_to_account_selected(self, machine):
        machine.select_connection(make_connection())

        state = machine.select_account(make_account())

        assert state.level == NavigationLevel.ACCOUNT_SELECTED
        assert state.account_id == "a1"
        assert state.leaf == LeafKind.TRANSACTIONS

    def test_switching_accounts_resets_leaf(self, machine):
        machine.select_connection(make_connection())
        machine.select_account(make_account())
        machine.select_leaf(LeafKind.BILLS)

        state = machine.select_account(make_account("a2"))

        assert state.account_id == "a2"
        assert state.leaf == LeafKind.TRANSACTIONS

    def test_account_of_another_connection_is_rejected(self, machine):
        machine.select_connection(make_connection())

        with pytest.raises(InvalidTransitionError):
            machine.select_account(make_account(connection_id="item-9"))

        assert machine.level == NavigationLevel.CONNECTION_SELECTED

    def test_missing_id_keeps_connection_for_recovery(self, machine):
        machine.select_connection(make_connection())

        with pytest.raises(SelectionRejected):
            machine.select_account({"name": "ghost"})

        assert machine.level == NavigationLevel.SELECTION_ERROR
        assert machine.back().level == NavigationLevel.CONNECTION_SELECTED
        assert machine.state.connection_id == "item-1"

    def test_account_without_connection_is_rejected(self, machine):
        machine.select_connection(make_connection())

        with pytest.raises(SelectionRejected):
            machine.select_account(make_account(connection_id=None))

        assert machine.level == NavigationLevel.SELECTION_ERROR


class TestNavigation:
    def test_back_walks_up(self, machine):
        machine.select_connection(make_connection())
        machine.select_account(make_account())

        state = machine.back()
        assert state.level == NavigationLevel.CONNECTION_SELECTED
        assert state.account is None

        state = machine.back()
        assert state.level == NavigationLevel.BROWSING
        assert state.connection is None

    def test_back_while_browsing_is_noop(self, machine):
        assert machine.back().level == NavigationLevel.BROWSING
        assert machine.generation == 0

    def test_dismiss_error(self, machine):
        with pytest.raises(SelectionRejected):
            machine.select_connection({"connector": {}})

        assert machine.dismiss_error().level == NavigationLevel.BROWSING

    def test_reset_from_any_state(self, machine):
        machine.select_connection(make_connection())
        machine.select_account(make_account())

        assert machine.reset().level == NavigationLevel.BROWSING

    def test_machine_is_reusable_after_error(self, machine):
        with pytest.raises(SelectionRejected):
            machine.select_connection({})

        state = machine.select_connection(make_connection())

        assert state.level == NavigationLevel.CONNECTION_SELECTED
        assert state.error is None

    def test_tab_only_at_connection_level(self, machine):
        with pytest.raises(InvalidTransitionError):
            machine.select_tab(ConnectionTab.IDENTITY)

        machine.select_connection(make_connection())
        assert machine.select_tab(ConnectionTab.IDENTITY).tab == ConnectionTab.IDENTITY

    def test_leaf_only_at_account_level(self, machine):
        machine.select_connection(make_connection())

        with pytest.raises(InvalidTransitionError):
            machine.select_leaf(LeafKind.LOANS)


def test_listeners_see_every_change(machine):
    seen = []
    unsubscribe = machine.subscribe(lambda state: seen.append(state.level))

    machine.select_connection(make_connection())
    machine.back()
    unsubscribe()
    machine.select_connection(make_connection())

    assert seen == [NavigationLevel.CONNECTION_SELECTED, NavigationLevel.BROWSING]
    assert machine.generation == 3


def test_owns(machine):
    machine.select_connection(make_connection())
    machine.select_account(make_account())

    assert owns(machine.state, "item-1")
    assert owns(machine.state, "item-9", account_id="a1")
    assert not owns(machine.state, "item-9")
