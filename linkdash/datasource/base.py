from abc import ABC, abstractmethod

from linkdash.datasource.model import ConnectToken
from linkdash.pagination import PageRequest


class AggregatorClient(ABC):
    # Every read returns the raw payload; shape is the normalizer's concern

    # -------- Connections --------
    @abstractmethod
    def list_connections(self, connection_ids: list[str]) -> list: ...

    @abstractmethod
    def get_connection(self, connection_id: str): ...

    @abstractmethod
    def update_connection(self, connection_id: str, parameters: dict | None = None): ...

    @abstractmethod
    def delete_connection(self, connection_id: str): ...

    # -------- Accounts / Identity --------
    @abstractmethod
    def get_accounts(self, connection_id: str): ...

    @abstractmethod
    def get_identity(self, connection_id: str): ...

    # -------- Leaf lists --------
    @abstractmethod
    def get_transactions(
        self,
        account_id: str,
        page: PageRequest | None = None,
        date_from: str | None = None,
        date_to: str | None = None,
    ): ...

    @abstractmethod
    def get_investments(self, connection_id: str): ...

    @abstractmethod
    def get_investment_transactions(
        self, investment_id: str, page: PageRequest | None = None
    ): ...

    @abstractmethod
    def get_loans(self, connection_id: str): ...

    @abstractmethod
    def get_bills(self, account_id: str): ...

    def close(self): ...


class SessionProvider(ABC):
    @abstractmethod
    def create_connect_token(
        self, item_id: str | None = None, options: dict | None = None
    ) -> ConnectToken: ...
