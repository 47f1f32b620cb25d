"""
app/schemas/bridge.py

Purpose: Attribution payload schemas

- BridgeAttribution: the record the Mini App posts to the relay
- BridgeResponse: what the relay answers on success
- BotAttributionMessage: what the Mini App hands to the bot via sendData
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, Union, Literal


class UserData(BaseModel):
    """Telegram user fields taken from initDataUnsafe.user."""

    id: Optional[int] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None
    language_code: Optional[str] = None
    is_premium: bool = False

    @field_validator("is_premium", mode="before")
    @classmethod
    def coerce_premium(cls, v):
        return bool(v)


class BridgeAttribution(BaseModel):
    """
    Attribution record sent by the Mini App.
    Built once per launch and transmitted immediately, never persisted.
    """

    telegram_id: Optional[Union[int, str]] = Field(
        default=None,
        description="Telegram user id; required before any CRM call"
    )
    start_param: Optional[str] = Field(
        default=None,
        description="Campaign tag from the startapp link"
    )
    user_data: UserData = Field(default_factory=UserData)
    init_data: str = Field(default="", description="Raw initData query string")
    timestamp: Optional[str] = Field(default=None, description="ISO 8601 creation time")
    platform: str = "unknown"
    version: str = "unknown"

    class Config:
        json_schema_extra = {
            "example": {
                "telegram_id": 123456789,
                "start_param": "camp1",
                "user_data": {
                    "id": 123456789,
                    "first_name": "Ivan",
                    "last_name": "Petrov",
                    "username": "ivanp",
                    "language_code": "ru",
                    "is_premium": False
                },
                "init_data": "query_id=AAH...&user=%7B%22id%22...&hash=abc",
                "timestamp": "2026-01-15T10:00:00.000Z",
                "platform": "ios",
                "version": "7.10"
            }
        }

    @field_validator("telegram_id", mode="before")
    @classmethod
    def blank_id_is_missing(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def telegram_id_str(self) -> str:
        return str(self.telegram_id) if self.telegram_id is not None else ""

    @property
    def display_name(self) -> str:
        """First and last name, or "User" when neither is known."""
        parts = [self.user_data.first_name or "", self.user_data.last_name or ""]
        return " ".join(p for p in parts if p) or "User"


class ResponseDetails(BaseModel):
    create_status: Optional[int] = None
    webhook_status: Optional[int] = None
    webhook_format: Optional[str] = None
    auth_strategy: Optional[str] = None
    start_param: str = ""


class BridgeResponse(BaseModel):
    """Relay answer after the CRM calls completed."""

    success: bool = True
    message: str = "Contact processed"
    contact_id: Optional[Union[int, str]] = None
    contact_created: bool = False
    variables_sent: bool = False
    details: ResponseDetails = Field(default_factory=ResponseDetails)


class BotAttributionMessage(BaseModel):
    """Payload for Telegram.WebApp.sendData, received by the bot as web_app_data."""

    action: Literal["bridge_attribution"] = "bridge_attribution"
    start_param: str = ""
    telegram_id: Optional[Union[int, str]] = None
    timestamp: Optional[str] = None

    @classmethod
    def from_attribution(cls, record: BridgeAttribution) -> "BotAttributionMessage":
        return cls(
            start_param=record.start_param or "",
            telegram_id=record.telegram_id,
            timestamp=record.timestamp,
        )
