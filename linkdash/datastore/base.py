from abc import ABC, abstractmethod
from collections.abc import Callable

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


class MirrorStore(ABC):
    # Reads return plain row dicts; the normalizer turns them into records

    # -------- Connections --------
    @abstractmethod
    def save_connection(self, obj: Connection): ...

    @abstractmethod
    def select_connection(self, connection_id: str) -> dict | None: ...

    @abstractmethod
    def retrieve_connections(self) -> list[dict]: ...

    @abstractmethod
    def delete_by_connection(
        self,
        connection_id: str,
        before_commit: Callable[[], list[str] | None] | None = None,
    ) -> list[str]: ...

    # -------- Accounts --------
    @abstractmethod
    def save_accounts(self, objs: list[Account]): ...

    @abstractmethod
    def retrieve_accounts(self, connection_id: str) -> list[dict]: ...

    # -------- Transactions --------
    @abstractmethod
    def save_transactions(self, objs: list[Transaction]): ...

    @abstractmethod
    def retrieve_transactions(
        self, account_id: str, limit: int = 100, offset: int = 0
    ) -> list[dict]: ...

    # -------- Identity --------
    @abstractmethod
    def save_identity(self, obj: Identity): ...

    @abstractmethod
    def retrieve_identity(self, connection_id: str) -> dict | None: ...

    # -------- Investments --------
    @abstractmethod
    def save_investments(self, objs: list[Investment]): ...

    @abstractmethod
    def retrieve_investments(self, connection_id: str) -> list[dict]: ...

    @abstractmethod
    def save_investment_transactions(self, objs: list[InvestmentTransaction]): ...

    @abstractmethod
    def retrieve_investment_transactions(
        self, investment_id: str, page: int = 1, page_size: int = 20
    ) -> list[dict]: ...

    # -------- Loans / Bills --------
    @abstractmethod
    def save_loans(self, objs: list[Loan]): ...

    @abstractmethod
    def retrieve_loans(self, connection_id: str) -> list[dict]: ...

    @abstractmethod
    def save_bills(self, objs: list[CreditCardBill]): ...

    @abstractmethod
    def retrieve_bills(self, account_id: str) -> list[dict]: ...
