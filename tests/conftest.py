from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

import pytest

from tachobridge._transport import HttpResponse, QueryParams
from tachobridge.config import BridgeConfig, DeviceProfile
from tachobridge.credentials import CredentialStore
from tachobridge.storage import MemoryStorage

COMPANY = "42"
CLIENTS_PATH = f"/v1/companies/{COMPANY}/tachograph-company-card-clients"


@dataclass
class RecordedCall:
    method: str
    path: str
    headers: dict[str, str]
    json_body: Any
    params: Any


@dataclass
class FakeTransport:
    """Scripted transport keyed by ``(method, path)``.

    Each route holds a queue of responses (or exceptions to raise).  The last
    queued entry is reused for every further call on that route.
    """

    routes: dict[tuple[str, str], list[HttpResponse | Exception]] = field(default_factory=dict)
    calls: list[RecordedCall] = field(default_factory=list)

    def reply(self, method: str, path: str, status: int = 200, data: Any = None) -> None:
        self.routes.setdefault((method, path), []).append(HttpResponse(status=status, data=data))

    def fail(self, method: str, path: str, exc: Exception) -> None:
        self.routes.setdefault((method, path), []).append(exc)

    def count(self, method: str, path: str) -> int:
        return sum(1 for call in self.calls if call.method == method and call.path == path)

    def last(self, method: str, path: str) -> RecordedCall:
        return [call for call in self.calls if call.method == method and call.path == path][-1]

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        json_body: Any = None,
        params: QueryParams | None = None,
    ) -> HttpResponse:
        path = urlsplit(url).path
        self.calls.append(RecordedCall(method, path, dict(headers or {}), json_body, params))
        queue = self.routes.get((method, path))
        if not queue:
            raise AssertionError(f"Unexpected request {method} {path}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def config() -> BridgeConfig:
    return BridgeConfig(
        hub_base_url="https://hub.test/",
        fleet_base_url="https://fleet.test",
        application_key="app-key",
        app_version="1.4.0",
        device=DeviceProfile(
            device_name="office-pc",
            device_platform="Windows",
            device_model="x86_64",
            os_version="10",
        ),
    )


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def store(storage: MemoryStorage) -> CredentialStore:
    return CredentialStore(storage)


@pytest.fixture
def fleet_store(store: CredentialStore) -> CredentialStore:
    """A store that is signed in with a cached Fleet token."""
    store.save(
        device_token="device-1",
        session_token="session-1",
        fleet_token="fleet-1",
        fleet_company_id=COMPANY,
    )
    return store
