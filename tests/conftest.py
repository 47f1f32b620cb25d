import json
from typing import Any, List, Optional, Tuple

import httpx
import pytest

from app.schemas.bridge import BridgeAttribution, UserData
from app.services.crm_client import CRMClient

API_BASE = "https://app.leadteh.test/api/v1"
WEBHOOK_URL = "https://rb257.leadteh.test/inner_webhook/test-hook"
API_KEY = "test-key"
BOT_ID = 257


class FakeCRM:
    """
    Stands in for Leadteh. Each endpoint answers from its own queue of
    (status, body) pairs; the last pair repeats once the queue runs dry.
    """

    def __init__(
        self,
        contact: Optional[List[Tuple[int, Any]]] = None,
        webhook: Optional[List[Tuple[int, Any]]] = None,
        error: Optional[Exception] = None,
    ):
        self.contact_responses = list(contact or [(200, {"success": True, "data": {"id": 555}})])
        self.webhook_responses = list(webhook or [(200, {"success": True})])
        self.error = error
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if request.url.path.endswith("/createOrUpdateContact"):
            queue = self.contact_responses
        else:
            queue = self.webhook_responses
        status, body = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def contact_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/createOrUpdateContact")]

    @property
    def webhook_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if str(r.url).startswith(WEBHOOK_URL)]


def body_of(request: httpx.Request) -> Any:
    return json.loads(request.content)


def make_crm_client(fake: FakeCRM, auth_order=("bearer", "x-api-key")) -> CRMClient:
    return CRMClient(
        api_key=API_KEY,
        bot_id=BOT_ID,
        webhook_url=WEBHOOK_URL,
        api_base_url=API_BASE,
        auth_order=auth_order,
        timeout=5.0,
        transport=fake.transport,
    )


@pytest.fixture
def fake_crm():
    return FakeCRM()


@pytest.fixture
def record():
    return BridgeAttribution(
        telegram_id=123,
        start_param="camp1",
        user_data=UserData(
            id=123,
            first_name="Ivan",
            last_name="Petrov",
            username="ivanp",
            language_code="ru",
            is_premium=True,
        ),
        init_data="",
        timestamp="2026-01-15T10:00:00Z",
        platform="ios",
        version="7.10",
    )
