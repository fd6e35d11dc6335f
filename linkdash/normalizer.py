"""Turns upstream payloads of any supported shape into canonical records.

Both upstreams (the live aggregator API and the relational mirror) answer with
one of a handful of shapes:

    [ {...}, {...} ]                 bare sequence
    {"transactions": [ ... ]}        wrapper keyed by the plural kind
    {"results": [ ... ], "page": 1}  generic wrapper
    {"id": "...", ...}               exactly one record

The shape is resolved once by ``classify`` and every record then goes through
id resolution and the builder registered for its kind. Nothing in here raises
for a structurally odd payload: unrecognized shapes become an empty list plus
a ``ShapeError`` on ``ResponseNormalizer.warnings``, and records without an
identifier are dropped and counted on ``ResponseNormalizer.dropped``. Both
describe the most recent call only.
"""

import json
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum

from linkdash.exceptions import IdentityMissingError, ShapeError
from linkdash.ids import clean_id, has_identifier, id_field, resolve_id
from linkdash.logging import get_logger
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
    Record,
    Transaction,
    TransactionKind,
)
from linkdash.utils import parse_datetime, to_decimal

logger = get_logger(__name__)

RESULTS_KEY = "results"


class PayloadShape(StrEnum):
    SEQUENCE = "SEQUENCE"
    WRAPPED = "WRAPPED"
    RESULTS = "RESULTS"
    SINGLE = "SINGLE"
    UNRECOGNIZED = "UNRECOGNIZED"


@dataclass(frozen=True)
class Payload:
    shape: PayloadShape
    items: tuple = ()
    key: str | None = None


@dataclass(frozen=True)
class KindConfig:
    kind: EntityKind
    wrapper_keys: tuple[str, ...]
    build: Callable[[dict], Record]

    @property
    def id_field(self) -> str:
        return id_field(self.kind)


# MARK: Field helpers


def _get(raw: Mapping, *names: str):
    for name in names:
        value = raw.get(name)
        if value is not None:
            return value
    return None


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None


def _text(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    return str(value)


def _int(value) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def _mapping(value) -> Mapping:
    if isinstance(value, Mapping):
        return value
    if isinstance(value, str):
        # Mirror stores nested objects as JSON text
        try:
            decoded = json.loads(value)
        except ValueError:
            return {}
        if isinstance(decoded, Mapping):
            return decoded
    return {}


def _strings(value) -> tuple[str, ...]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return (value,) if value.strip() else ()
    if not isinstance(value, Sequence) or isinstance(value, str):
        return ()
    found = []
    for entry in value:
        if isinstance(entry, Mapping):
            entry = entry.get("value")
        text = _text(entry)
        if text:
            found.append(text)
    return tuple(found)


def _currency(raw: Mapping, *extra: str) -> str | None:
    code = _text(_get(raw, "currency_code", "currencyCode", *extra))
    return code.upper() if code else None


def _connection_ref(raw: Mapping) -> str | None:
    return clean_id(_get(raw, "connection_id", "item_id", "itemId"))


# MARK: Builders


def build_connection(raw: dict) -> Connection:
    connector = _mapping(raw.get("connector"))
    return Connection(
        id=raw["item_id"],
        connector_id=clean_id(
            _first(_get(raw, "connector_id", "connectorId"), connector.get("id"))
        ),
        connector_name=_text(
            _get(raw, "connector_name", "connectorName") or connector.get("name")
        )
        or "",
        connector_image_url=_text(
            _get(raw, "connector_image_url", "connectorImageUrl")
            or connector.get("imageUrl")
        ),
        status=ConnectionStatus.parse(raw.get("status")),
        created_at=parse_datetime(_get(raw, "created_at", "createdAt")),
        updated_at=parse_datetime(_get(raw, "updated_at", "updatedAt")),
        last_updated_at=parse_datetime(_get(raw, "last_updated_at", "lastUpdatedAt")),
    )


def _account_kind(value) -> AccountKind:
    try:
        return AccountKind(str(value).strip().upper())
    except ValueError:
        return AccountKind.BANK


def _credit_info(raw: Mapping) -> CreditInfo | None:
    nested = _mapping(_get(raw, "credit_data", "creditData"))
    limit = to_decimal(
        _first(raw.get("credit_limit"), _get(nested, "creditLimit", "credit_limit"))
    )
    available = to_decimal(
        _first(
            raw.get("available_credit_limit"),
            _get(nested, "availableCreditLimit", "available_credit_limit"),
        )
    )
    if limit is None and available is None:
        return None
    return CreditInfo(credit_limit=limit, available_credit_limit=available)


def build_account(raw: dict) -> Account:
    return Account(
        id=raw["account_id"],
        connection_id=_connection_ref(raw),
        kind=_account_kind(_get(raw, "type", "kind")),
        name=_text(raw.get("name")) or "",
        currency_code=_currency(raw),
        subtype=_text(raw.get("subtype")),
        marketing_name=_text(_get(raw, "marketing_name", "marketingName")),
        number=_text(raw.get("number")),
        balance=to_decimal(raw.get("balance")),
        owner=_text(raw.get("owner")),
        credit_info=_credit_info(raw),
    )


def _transaction_kind(value, amount) -> TransactionKind:
    if isinstance(value, str) and value.strip().upper() in TransactionKind.__members__:
        return TransactionKind(value.strip().upper())
    if amount is not None and not amount.is_nan() and amount < 0:
        return TransactionKind.DEBIT
    return TransactionKind.CREDIT


def build_transaction(raw: dict) -> Transaction:
    amount = to_decimal(raw.get("amount"))
    return Transaction(
        id=raw["transaction_id"],
        account_id=clean_id(_get(raw, "account_id", "accountId")),
        date=parse_datetime(raw.get("date")),
        description=_text(raw.get("description")) or "",
        amount=amount,
        currency_code=_currency(raw),
        kind=_transaction_kind(_get(raw, "type", "kind"), amount),
        description_raw=_text(_get(raw, "description_raw", "descriptionRaw")),
        balance_after=to_decimal(_get(raw, "balance_after", "balanceAfter", "balance")),
        category=_text(raw.get("category")),
        status=_text(raw.get("status")),
    )


def build_investment(raw: dict) -> Investment:
    return Investment(
        id=raw["investment_id"],
        connection_id=_connection_ref(raw),
        name=_text(raw.get("name")) or "",
        currency_code=_currency(raw),
        account_id=clean_id(_get(raw, "account_id", "accountId")),
        code=_text(raw.get("code")),
        type=_text(raw.get("type")),
        subtype=_text(raw.get("subtype")),
        number=_text(raw.get("number")),
        owner=_text(raw.get("owner")),
        quantity=to_decimal(raw.get("quantity")),
        value=to_decimal(raw.get("value")),
        amount=to_decimal(raw.get("amount")),
        balance=to_decimal(raw.get("balance")),
        fees=to_decimal(_get(raw, "fees", "taxes")),
    )


def build_investment_transaction(raw: dict) -> InvestmentTransaction:
    return InvestmentTransaction(
        id=raw["transaction_id"],
        investment_id=clean_id(_get(raw, "investment_id", "investmentId")),
        date=parse_datetime(_get(raw, "date", "tradeDate")),
        description=_text(raw.get("description")) or "",
        currency_code=_currency(raw),
        type=_text(raw.get("type")),
        quantity=to_decimal(raw.get("quantity")),
        value=to_decimal(raw.get("value")),
        amount=to_decimal(raw.get("amount")),
        fees=to_decimal(raw.get("fees")),
    )


def build_loan(raw: dict) -> Loan:
    return Loan(
        id=raw["loan_id"],
        connection_id=_connection_ref(raw),
        product_name=_text(_get(raw, "product_name", "productName")) or "",
        currency_code=_currency(raw),
        account_id=clean_id(_get(raw, "account_id", "accountId")),
        contract_number=_text(_get(raw, "contract_number", "contractNumber")),
        type=_text(raw.get("type")),
        subtype=_text(raw.get("subtype")),
        contracted_amount=to_decimal(
            _get(raw, "contracted_amount", "contractedAmount", "contractAmount")
        ),
        outstanding_balance=to_decimal(
            _get(raw, "outstanding_balance", "outstandingBalance")
        ),
        interest_rate=to_decimal(_get(raw, "interest_rate", "interestRate")),
        cet=to_decimal(_get(raw, "cet", "CET")),
        due_date=parse_datetime(_get(raw, "due_date", "dueDate")),
        installment_frequency=_text(
            _get(
                raw,
                "installment_frequency",
                "installmentFrequency",
                "installmentPeriodicity",
            )
        ),
        installments_to_pay=_int(_get(raw, "installments_to_pay", "installmentsToPay")),
        created_at=parse_datetime(_get(raw, "created_at", "createdAt")),
    )


def build_bill(raw: dict) -> CreditCardBill:
    return CreditCardBill(
        id=raw["bill_id"],
        account_id=clean_id(_get(raw, "account_id", "accountId")),
        due_date=parse_datetime(_get(raw, "due_date", "dueDate")),
        total_amount=to_decimal(_get(raw, "total_amount", "totalAmount")),
        currency_code=_currency(raw, "totalAmountCurrencyCode"),
        minimum_payment=to_decimal(
            _get(raw, "minimum_payment", "minimumPayment", "minimumPaymentAmount")
        ),
        paid_amount=to_decimal(_get(raw, "paid_amount", "paidAmount")),
        payment_date=parse_datetime(_get(raw, "payment_date", "paymentDate")),
        status=_text(raw.get("status")),
    )


def build_identity(raw: dict) -> Identity:
    return Identity(
        id=raw["identity_id"],
        connection_id=_connection_ref(raw),
        full_name=_text(_get(raw, "full_name", "fullName")),
        document=_text(raw.get("document")),
        document_type=_text(_get(raw, "document_type", "documentType")),
        birth_date=parse_datetime(_get(raw, "birth_date", "birthDate")),
        job_title=_text(_get(raw, "job_title", "jobTitle")),
        emails=_strings(raw.get("emails")),
        phone_numbers=_strings(_get(raw, "phone_numbers", "phoneNumbers")),
    )


KIND_CONFIGS: dict[EntityKind, KindConfig] = {
    config.kind: config
    for config in (
        KindConfig(EntityKind.CONNECTION, ("items", "connections"), build_connection),
        KindConfig(EntityKind.ACCOUNT, ("accounts",), build_account),
        KindConfig(EntityKind.TRANSACTION, ("transactions",), build_transaction),
        KindConfig(EntityKind.INVESTMENT, ("investments",), build_investment),
        KindConfig(
            EntityKind.INVESTMENT_TRANSACTION,
            ("transactions",),
            build_investment_transaction,
        ),
        KindConfig(EntityKind.LOAN, ("loans",), build_loan),
        KindConfig(EntityKind.BILL, ("bills",), build_bill),
        KindConfig(EntityKind.IDENTITY, ("identities",), build_identity),
    )
}


# MARK: Normalizer


def _is_sequence(value) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes))


def classify(payload, kind: EntityKind) -> Payload:
    """Resolve which supported shape ``payload`` arrived in."""
    config = KIND_CONFIGS[EntityKind(kind)]

    if _is_sequence(payload):
        return Payload(PayloadShape.SEQUENCE, tuple(payload))

    if isinstance(payload, Mapping):
        for key in config.wrapper_keys:
            if _is_sequence(payload.get(key)):
                return Payload(PayloadShape.WRAPPED, tuple(payload[key]), key)
        if _is_sequence(payload.get(RESULTS_KEY)):
            return Payload(PayloadShape.RESULTS, tuple(payload[RESULTS_KEY]), RESULTS_KEY)
        if has_identifier(payload, kind):
            return Payload(PayloadShape.SINGLE, (payload,))

    return Payload(PayloadShape.UNRECOGNIZED)


class ResponseNormalizer:
    """
    Normalizes raw upstream payloads into canonical records.

    Usage:
        normalizer = ResponseNormalizer()
        accounts = normalizer.normalize(client.get_accounts(item_id), EntityKind.ACCOUNT)
        if normalizer.warnings: ...
    """

    def __init__(self, configs: dict[EntityKind, KindConfig] | None = None) -> None:
        self.configs = configs if configs is not None else KIND_CONFIGS
        self._warnings: list[ShapeError] = []
        self._dropped: list[IdentityMissingError] = []

    @property
    def warnings(self) -> list[ShapeError]:
        """Shape degradations from the most recent ``normalize`` call."""
        return self._warnings.copy()

    @property
    def dropped(self) -> list[IdentityMissingError]:
        """Records the most recent ``normalize`` call discarded for lack of an identifier."""
        return self._dropped.copy()

    def clear(self) -> None:
        self._warnings = []
        self._dropped = []

    def normalize(self, payload, kind: EntityKind) -> list[Record]:
        self.clear()
        kind = EntityKind(kind)
        config = self.configs[kind]
        resolved = classify(payload, kind)

        if resolved.shape == PayloadShape.UNRECOGNIZED:
            warning = ShapeError(
                f"Unrecognized {kind} payload of type {type(payload).__name__}",
                kind=kind,
                payload=payload,
            )
            self._warnings.append(warning)
            logger.warning(str(warning))
            return []

        records: list[Record] = []
        dropped = 0
        for item in resolved.items:
            try:
                raw = resolve_id(item, kind)
            except IdentityMissingError as e:
                self._dropped.append(e)
                dropped += 1
                logger.debug("Dropping %s record: %s", kind, e)
                continue
            records.append(config.build(raw))

        if dropped:
            logger.info(
                "Dropped %d of %d %s records without an identifier",
                dropped,
                len(resolved.items),
                kind,
            )
        return records

    def normalize_one(self, payload, kind: EntityKind) -> Record | None:
        records = self.normalize(payload, kind)
        return records[0] if records else None


def normalize(payload, kind: EntityKind) -> list[Record]:
    return ResponseNormalizer().normalize(payload, kind)
