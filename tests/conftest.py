"""Shared fixtures: a fake CRM HTTP endpoint, a controllable clock and wired services."""

import json
import threading
from typing import Any, Dict, List, Optional, Tuple

import pytest

from crmshift.api.dependencies import Services
from crmshift.extractors.property_extractor import PropertyExtractor
from crmshift.loaders.property_loader import PropertyLoader
from crmshift.models.migration import MigrationConfig
from crmshift.orchestrator import PropertyMigrationOrchestrator
from crmshift.services.catalog import PropertyCatalogService
from crmshift.services.mapping_store import MappingStateStore
from crmshift.services.schema_registry import SchemaRegistry
from crmshift.services.token_manager import TokenLifecycleManager
from crmshift.stores.memory_store import InMemoryProfileStore

BASE_URL = "https://crm.test"
TOKEN_PATH = "/oauth/v1/token"
USER = "user-123"


class FakeResponse:
    """Just enough of requests.Response for the extractors and loaders."""

    def __init__(self, status_code: int = 200, json_data: Any = None, headers: Optional[Dict[str, str]] = None):
        self.status_code = status_code
        self._json = json_data
        self.headers = headers or {}
        self.text = json.dumps(json_data) if json_data is not None else ""

    def json(self):
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeCrm:
    """
    In-process stand-in for the CRM's token and properties endpoints.

    Access tokens look like ``"<instance>-access-<n>"`` so requests can be
    routed to the right tenant. Responses queued with ``queue`` are served
    before the default behaviour for that method and path.
    """

    def __init__(self):
        self.properties: Dict[str, Dict[str, Dict[str, Dict[str, Any]]]] = {"a": {}, "b": {}}
        self.calls: List[Tuple[str, str]] = []
        self.token_forms: List[Dict[str, str]] = []
        self.queued: Dict[Tuple[str, str], List[Any]] = {}
        self.expires_in = 1800
        self.token_gate: Optional[threading.Event] = None
        self._lock = threading.Lock()
        self._issued = 0

    def add_property(self, instance, object_type, name, label=None, type="string", field_type="text", built_in=False):
        self.properties[instance].setdefault(object_type, {})[name] = {
            "name": name,
            "label": label or name,
            "type": type,
            "fieldType": field_type,
            "hubspotDefined": built_in,
        }

    def queue(self, method: str, path: str, *responses) -> None:
        self.queued.setdefault((method, path), []).extend(responses)

    def count(self, method: str, prefix: str = "") -> int:
        return sum(1 for m, p in self.calls if m == method and p.startswith(prefix))

    def _next_queued(self, method: str, path: str):
        with self._lock:
            self.calls.append((method, path))
            pending = self.queued.get((method, path))
            if pending:
                item = pending.pop(0)
                if isinstance(item, Exception):
                    raise item
                return item
        return None

    @staticmethod
    def _instance(headers: Dict[str, str]) -> str:
        return headers["Authorization"].split()[-1].split("-")[0]

    def post(self, url, data=None, json=None, headers=None, timeout=None):
        path = url[len(BASE_URL):]
        queued = self._next_queued("POST", path)
        if queued is not None:
            return queued

        if path == TOKEN_PATH:
            if self.token_gate is not None:
                self.token_gate.wait(5)
            with self._lock:
                self._issued += 1
                self.token_forms.append(dict(data))
                issued = self._issued
            grant = data.get("refresh_token") or data.get("code")
            instance = grant.rsplit("-", 1)[-1]
            return FakeResponse(200, {
                "access_token": f"{instance}-access-{issued}",
                "refresh_token": f"refresh-{instance}",
                "expires_in": self.expires_in,
            })

        object_type = path.split("/")[4]
        tenant = self.properties[self._instance(headers)].setdefault(object_type, {})
        if json["name"] in tenant:
            return FakeResponse(409, {"message": f"Property {json['name']} already exists"})
        tenant[json["name"]] = dict(json)
        return FakeResponse(201, dict(json))

    def get(self, url, headers=None, params=None, timeout=None):
        path = url[len(BASE_URL):]
        queued = self._next_queued("GET", path)
        if queued is not None:
            return queued

        parts = path.split("/")
        tenant = self.properties[self._instance(headers)].get(parts[4], {})
        if len(parts) > 5:
            found = tenant.get(parts[5])
            return FakeResponse(200, found) if found else FakeResponse(404, {"message": "Not found"})
        return FakeResponse(200, {"results": list(tenant.values())})

    @property
    def token_calls(self) -> int:
        return self.count("POST", TOKEN_PATH)


@pytest.fixture
def crm() -> FakeCrm:
    return FakeCrm()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryProfileStore:
    return InMemoryProfileStore({
        USER: {
            "hubspot_refresh_token_a": "refresh-a",
            "hubspot_refresh_token_b": "refresh-b",
        }
    })


@pytest.fixture
def registry() -> SchemaRegistry:
    registry = SchemaRegistry(load_bundled=False)
    registry.register_defaults("contacts", [
        {"name": "firstname", "label": "First Name"},
        {"name": "email", "label": "Email"},
        {"name": "city", "label": "City"},
    ], "contactinformation")
    registry.register_defaults("deals", [
        {"name": "amount", "label": "Amount", "type": "number", "fieldType": "number"},
        {"name": "dealname", "label": "Deal Name"},
    ], "dealinformation")
    return registry


@pytest.fixture
def config() -> MigrationConfig:
    return MigrationConfig(
        client_id="client-id",
        client_secret="client-secret",
        redirect_uri="http://localhost/callback",
        api_base_url=BASE_URL,
        token_url=BASE_URL + TOKEN_PATH,
        property_delay_seconds=0.0,
    )


@pytest.fixture
def tokens(crm, clock, store, config) -> TokenLifecycleManager:
    return TokenLifecycleManager.from_config(config, store=store, session=crm, clock=clock)


@pytest.fixture
def catalog(crm, clock, tokens) -> PropertyCatalogService:
    return PropertyCatalogService(tokens, PropertyExtractor(base_url=BASE_URL, session=crm), clock=clock)


@pytest.fixture
def mappings(store, registry) -> MappingStateStore:
    return MappingStateStore(store, registry)


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def orchestrator(crm, tokens, catalog, mappings, registry, sleeps) -> PropertyMigrationOrchestrator:
    return PropertyMigrationOrchestrator(
        tokens,
        catalog,
        mappings,
        PropertyLoader(base_url=BASE_URL, session=crm),
        registry=registry,
        property_delay=0.0,
        sleep=sleeps.append,
        jitter=lambda: 0.0,
    )


@pytest.fixture
def services(config, store, registry, tokens, catalog, mappings, orchestrator) -> Services:
    return Services(
        config=config,
        store=store,
        registry=registry,
        tokens=tokens,
        catalog=catalog,
        mappings=mappings,
        orchestrator=orchestrator,
    )
