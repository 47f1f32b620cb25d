"""
app/services/crm_client.py

Purpose: Leadteh CRM integration

- Contact upsert through the REST API
- Attribution variables through the bot's inner_webhook
- Ordered authentication strategies, advanced only on 401
- Ordered payload formats for the inner webhook, advanced on any non-2xx
"""

import httpx
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

JSON_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}


class CRMServiceError(Exception):
    """Raised when the CRM cannot be reached or does not answer in time."""
    pass


@dataclass(frozen=True)
class AuthStrategy:
    """One way of presenting the API key to Leadteh."""
    name: str
    header: Optional[str] = None
    header_prefix: str = ""
    query_param: Optional[str] = None

    def apply(self, api_key: str) -> Tuple[Dict[str, str], Dict[str, str]]:
        """Returns (headers, query params) carrying the key."""
        headers: Dict[str, str] = {}
        params: Dict[str, str] = {}
        if self.header:
            headers[self.header] = f"{self.header_prefix}{api_key}"
        if self.query_param:
            params[self.query_param] = api_key
        return headers, params


AUTH_STRATEGIES: Dict[str, AuthStrategy] = {
    "bearer": AuthStrategy("bearer", header="Authorization", header_prefix="Bearer "),
    "x-api-key": AuthStrategy("x-api-key", header="X-Api-Key"),
    "query": AuthStrategy("query", query_param="api_token"),
}


@dataclass
class CRMCallResult:
    """Outcome of one logical CRM call, possibly spanning several attempts."""
    status: int
    body: Any = None
    strategy: Optional[str] = None
    payload_format: Optional[str] = None
    attempts: int = 1
    history: List[Tuple[str, int]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def contact_id(self) -> Optional[Any]:
        """Contact id from `data.id` or a top-level `id`."""
        if not isinstance(self.body, dict):
            return None
        data = self.body.get("data")
        if isinstance(data, dict) and data.get("id") is not None:
            return data["id"]
        return self.body.get("id")


def _decode_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class CRMClient:
    """
    Thin async client for the Leadteh endpoints the bridge uses.
    """

    def __init__(
        self,
        api_key: str,
        bot_id: int,
        webhook_url: str,
        api_base_url: str = "https://app.leadteh.ru/api/v1",
        auth_order: Sequence[str] = ("bearer", "x-api-key"),
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.bot_id = bot_id
        self.webhook_url = webhook_url
        self.api_base_url = api_base_url.rstrip("/")
        self.strategies = [AUTH_STRATEGIES[name] for name in auth_order]
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, transport: Optional[httpx.AsyncBaseTransport] = None) -> "CRMClient":
        return cls(
            api_key=settings.LEADTEH_API_KEY,
            bot_id=settings.LEADTEH_BOT_ID,
            webhook_url=settings.LEADTEH_WEBHOOK_URL,
            api_base_url=settings.LEADTEH_API_BASE_URL,
            auth_order=settings.LEADTEH_AUTH_ORDER,
            timeout=settings.CRM_TIMEOUT_SECONDS,
            transport=transport,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def _post(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        try:
            return await self._get_client().post(
                url,
                json=payload,
                headers={**JSON_HEADERS, **(headers or {})},
                params=params or None,
            )
        except httpx.TimeoutException:
            logger.error(f"CRM timeout calling {url}")
            raise CRMServiceError("CRM is taking too long to respond")
        except httpx.RequestError as e:
            logger.error(f"Network error calling CRM {url}: {e}")
            raise CRMServiceError("Unable to connect to CRM")

    async def create_or_update_contact(self, payload: Dict[str, Any]) -> CRMCallResult:
        """
        Upserts a contact, walking the auth strategies in order.

        The same payload is sent with each strategy. Only a 401 moves on to
        the next one; any other status ends the chain.
        """
        url = f"{self.api_base_url}/createOrUpdateContact"
        history: List[Tuple[str, int]] = []
        result: Optional[CRMCallResult] = None

        for attempt, strategy in enumerate(self.strategies, start=1):
            headers, params = strategy.apply(self.api_key)
            response = await self._post(url, payload, headers=headers, params=params)
            body = _decode_body(response)
            history.append((strategy.name, response.status_code))

            logger.info(
                f"Create contact attempt {attempt}/{len(self.strategies)} "
                f"via {strategy.name}: status={response.status_code}",
                extra={"attempt": attempt, "strategy": strategy.name}
            )
            logger.debug(f"Create contact response: {body}")

            result = CRMCallResult(
                status=response.status_code,
                body=body,
                strategy=strategy.name,
                attempts=attempt,
                history=history,
            )
            if response.status_code != 401:
                break
            logger.warning(f"CRM rejected {strategy.name} auth (401)")

        return result

    async def send_inner_webhook(
        self, formats: Sequence[Tuple[str, Dict[str, Any]]]
    ) -> CRMCallResult:
        """
        Posts attribution variables to the inner webhook.

        Args:
            formats: (format name, payload) pairs, tried in order until one
                     gets a 2xx answer

        Returns:
            Result of the last attempt made
        """
        if not formats:
            raise ValueError("At least one payload format is required")

        history: List[Tuple[str, int]] = []
        result: Optional[CRMCallResult] = None

        for attempt, (name, payload) in enumerate(formats, start=1):
            response = await self._post(self.webhook_url, payload)
            body = _decode_body(response)
            history.append((name, response.status_code))

            logger.info(
                f"Inner webhook ({name}) status={response.status_code}",
                extra={"attempt": attempt}
            )
            logger.debug(f"Inner webhook ({name}) response: {body}")

            result = CRMCallResult(
                status=response.status_code,
                body=body,
                payload_format=name,
                attempts=attempt,
                history=history,
            )
            if result.ok:
                break

        return result

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# Global CRM client instance
_crm_client: Optional[CRMClient] = None


def get_crm_client() -> CRMClient:
    """Get or create the global CRM client."""
    global _crm_client
    if _crm_client is None:
        _crm_client = CRMClient.from_settings()
    return _crm_client


async def close_crm_client():
    """Close the CRM client and its connection pool."""
    global _crm_client
    if _crm_client:
        await _crm_client.close()
        _crm_client = None
