from datetime import datetime, timedelta, timezone

import httpx

from linkdash.config import PluggyConfig
from linkdash.datasource.base import AggregatorClient, SessionProvider
from linkdash.datasource.model import ConnectToken
from linkdash.exceptions import NotFoundError, TransportError
from linkdash.logging import get_logger
from linkdash.pagination import PageRequest, PaginationStyle

logger = get_logger(__name__)

CONNECT_TOKEN_TTL = timedelta(minutes=30)
# Keys last two hours; renew a little early
API_KEY_TTL = timedelta(minutes=110)
REJECTED_KEY_STATUSES = (401, 403)


def _page_params(page: PageRequest | None) -> dict:
    # The aggregator only pages by number; offsets are mapped onto it
    if page is None:
        return {}
    if page.style == PaginationStyle.OFFSET:
        return {"page": page.offset // page.size + 1, "pageSize": page.size}
    return {"page": page.page, "pageSize": page.size}


class Pluggy(AggregatorClient, SessionProvider):
    def __init__(self, config: PluggyConfig, http: httpx.Client | None = None):
        self.client_id, self.client_secret = config.require_credentials()
        self.config = config
        self.client = http or httpx.Client(
            base_url=config.api_url, timeout=config.timeout
        )
        self._api_key: str | None = None
        self._api_key_expires_at = datetime.min.replace(tzinfo=timezone.utc)

    def _authenticate(self) -> str:
        response = self._send(
            "POST",
            "/auth",
            json={"clientId": self.client_id, "clientSecret": self.client_secret},
        )
        api_key = response.get("apiKey") if isinstance(response, dict) else None
        if not api_key:
            raise TransportError("Authentication response had no API key")
        self._api_key = api_key
        self._api_key_expires_at = datetime.now(timezone.utc) + API_KEY_TTL
        return api_key

    def _current_api_key(self) -> str:
        if self._api_key and datetime.now(timezone.utc) < self._api_key_expires_at:
            return self._api_key
        return self._authenticate()

    def _send(self, method: str, path: str, headers: dict | None = None, **kwargs):
        try:
            response = self.client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if response.status_code == 404:
            raise NotFoundError(f"{method} {path} not found", 404)
        if response.is_error:
            raise TransportError(
                f"{method} {path} returned {response.status_code}: {response.text}",
                response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"{method} {path} returned invalid JSON") from e

    def _request(self, method: str, path: str, **kwargs):
        logger.debug("%s %s", method, path)
        api_key = self._current_api_key()
        try:
            return self._send(method, path, headers={"X-API-KEY": api_key}, **kwargs)
        except TransportError as e:
            if e.status_code not in REJECTED_KEY_STATUSES:
                raise

        # Key expired or was revoked before its time; authenticate and retry once
        logger.info("API key rejected on %s %s, authenticating again", method, path)
        self._api_key = None
        api_key = self._authenticate()
        return self._send(method, path, headers={"X-API-KEY": api_key}, **kwargs)

    def create_connect_token(
        self, item_id: str | None = None, options: dict | None = None
    ) -> ConnectToken:
        body = {}
        if item_id:
            body["itemId"] = item_id
        if options:
            body["options"] = options
        response = self._request("POST", "/connect_token", json=body)
        token = response.get("accessToken") if isinstance(response, dict) else None
        if not token:
            raise TransportError("Connect token response had no access token")
        return ConnectToken(
            token,
            datetime.now(timezone.utc) + CONNECT_TOKEN_TTL,
            self.config.include_sandbox,
        )

    def get_connection(self, connection_id: str):
        return self._request("GET", f"/items/{connection_id}")

    def list_connections(self, connection_ids: list[str]) -> list:
        # No listing endpoint; the local registry supplies the ids
        return [self.get_connection(connection_id) for connection_id in connection_ids]

    def update_connection(self, connection_id: str, parameters: dict | None = None):
        body = {"parameters": parameters} if parameters else {}
        return self._request("PATCH", f"/items/{connection_id}", json=body)

    def delete_connection(self, connection_id: str):
        return self._request("DELETE", f"/items/{connection_id}")

    def get_accounts(self, connection_id: str):
        return self._request("GET", "/accounts", params={"itemId": connection_id})

    def get_transactions(
        self,
        account_id: str,
        page: PageRequest | None = None,
        date_from: str | None = None,
        date_to: str | None = None,
    ):
        params = {"accountId": account_id, **_page_params(page)}
        if date_from:
            params["from"] = date_from
        if date_to:
            params["to"] = date_to
        return self._request("GET", "/transactions", params=params)

    def get_identity(self, connection_id: str):
        try:
            return self._request("GET", "/identity", params={"itemId": connection_id})
        except NotFoundError:
            logger.info("No identity data for connection %s", connection_id)
            return None

    def get_investments(self, connection_id: str):
        return self._request("GET", "/investments", params={"itemId": connection_id})

    def get_investment_transactions(
        self, investment_id: str, page: PageRequest | None = None
    ):
        return self._request(
            "GET",
            f"/investments/{investment_id}/transactions",
            params=_page_params(page),
        )

    def get_loans(self, connection_id: str):
        return self._request("GET", "/loans", params={"itemId": connection_id})

    def get_bills(self, account_id: str):
        return self._request("GET", "/bills", params={"accountId": account_id})

    def close(self):
        self.client.close()
