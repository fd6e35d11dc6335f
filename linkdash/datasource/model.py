from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class ConnectToken:
    access_token: str
    expires_at: datetime
    # Widget setting handed out with the token
    include_sandbox: bool = False


class ConnectorPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int | str | None = None
    name: str | None = None
    imageUrl: str | None = None


class ItemPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    connector: ConnectorPayload | None = None
    status: str | None = None
    createdAt: datetime | None = None
    updatedAt: datetime | None = None
    lastUpdatedAt: datetime | None = None


class SessionSuccess(BaseModel):
    item: ItemPayload = Field(validation_alias=AliasChoices("item", "connection"))

    def item_payload(self) -> dict[str, Any]:
        return self.item.model_dump(exclude_none=True)


class SessionErrorData(BaseModel):
    model_config = ConfigDict(extra="allow")

    item: ItemPayload | None = None


class SessionFailure(BaseModel):
    message: str = "Connection failed"
    data: SessionErrorData | None = None
    partialConnection: ItemPayload | None = None

    @property
    def partial_connection_id(self) -> str | None:
        partial = self.partialConnection or (self.data.item if self.data else None)
        return partial.id if partial else None


def parse_session_result(payload) -> SessionSuccess | SessionFailure:
    """Decide which side of the linking widget callback ``payload`` came from."""
    if isinstance(payload, (SessionSuccess, SessionFailure)):
        return payload
    if isinstance(payload, dict) and ("item" in payload or "connection" in payload):
        return SessionSuccess.model_validate(payload)
    return SessionFailure.model_validate(payload if isinstance(payload, dict) else {})
