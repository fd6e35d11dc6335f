from collections.abc import Mapping

from linkdash.exceptions import IdentityMissingError
from linkdash.model import EntityKind

GENERIC_ID_FIELD = "id"

ID_FIELDS: dict[EntityKind, str] = {
    EntityKind.CONNECTION: "item_id",
    EntityKind.ACCOUNT: "account_id",
    EntityKind.TRANSACTION: "transaction_id",
    EntityKind.INVESTMENT: "investment_id",
    EntityKind.INVESTMENT_TRANSACTION: "transaction_id",
    EntityKind.LOAN: "loan_id",
    EntityKind.BILL: "bill_id",
    EntityKind.IDENTITY: "identity_id",
}


def clean_id(value) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    return None


def id_field(kind: EntityKind) -> str:
    return ID_FIELDS[EntityKind(kind)]


def has_identifier(record, kind: EntityKind) -> bool:
    if not isinstance(record, Mapping):
        return False
    return bool(
        clean_id(record.get(id_field(kind))) or clean_id(record.get(GENERIC_ID_FIELD))
    )


def resolve_id(record: Mapping, kind: EntityKind) -> dict:
    """Return a copy of ``record`` with the kind-qualified id populated.

    The qualified field wins when already set; otherwise the generic ``id`` is
    copied into it. Applying this twice gives the same result as once.

    Raises:
        IdentityMissingError: neither field holds a usable identifier
    """
    if not isinstance(record, Mapping):
        raise IdentityMissingError(
            f"{kind} record is not an object", kind=kind, record=record
        )

    field = id_field(kind)
    resolved = clean_id(record.get(field)) or clean_id(record.get(GENERIC_ID_FIELD))
    if resolved is None:
        raise IdentityMissingError(
            f"{kind} record has neither {field!r} nor {GENERIC_ID_FIELD!r}",
            kind=kind,
            record=record,
        )

    result = dict(record)
    result[field] = resolved
    return result
