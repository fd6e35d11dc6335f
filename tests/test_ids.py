import pytest

from linkdash.exceptions import IdentityMissingError
from linkdash.ids import clean_id, has_identifier, id_field, resolve_id
from linkdash.model import EntityKind


class TestCleanId:
    def test_string_is_stripped(self):
        assert clean_id("  a1 ") == "a1"

    def test_blank_string_is_missing(self):
        assert clean_id("   ") is None

    def test_integer_becomes_string(self):
        assert clean_id(42) == "42"

    def test_bool_and_other_types_are_missing(self):
        assert clean_id(True) is None
        assert clean_id(None) is None
        assert clean_id({"id": "x"}) is None


class TestResolveId:
    def test_qualified_field_is_kept(self):
        record = {"account_id": "a1", "id": "other"}

        assert resolve_id(record, EntityKind.ACCOUNT)["account_id"] == "a1"

    def test_generic_id_is_copied(self):
        record = {"id": "a1", "name": "Checking"}

        resolved = resolve_id(record, EntityKind.ACCOUNT)

        assert resolved["account_id"] == "a1"
        assert resolved["name"] == "Checking"

    def test_blank_qualified_field_falls_back_to_generic(self):
        resolved = resolve_id({"bill_id": "", "id": "b1"}, EntityKind.BILL)

        assert resolved["bill_id"] == "b1"

    def test_input_is_not_mutated(self):
        record = {"id": "t1"}

        resolve_id(record, EntityKind.TRANSACTION)

        assert record == {"id": "t1"}

    def test_is_idempotent(self):
        once = resolve_id({"id": 7, "amount": 10}, EntityKind.TRANSACTION)
        twice = resolve_id(once, EntityKind.TRANSACTION)

        assert once == twice
        assert twice["transaction_id"] == "7"

    def test_missing_identifier_raises(self):
        with pytest.raises(IdentityMissingError) as exc:
            resolve_id({"name": "no id"}, EntityKind.LOAN)

        assert exc.value.kind == EntityKind.LOAN
        assert exc.value.record == {"name": "no id"}

    def test_non_mapping_raises(self):
        with pytest.raises(IdentityMissingError):
            resolve_id(["a1"], EntityKind.ACCOUNT)


def test_connection_uses_item_id():
    assert id_field(EntityKind.CONNECTION) == "item_id"
    assert resolve_id({"id": "item-1"}, EntityKind.CONNECTION)["item_id"] == "item-1"


def test_has_identifier():
    assert has_identifier({"identity_id": "i1"}, EntityKind.IDENTITY)
    assert has_identifier({"id": "i1"}, EntityKind.IDENTITY)
    assert not has_identifier({"fullName": "Ana"}, EntityKind.IDENTITY)
    assert not has_identifier("i1", EntityKind.IDENTITY)
