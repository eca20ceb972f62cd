"""Tests for the property catalog service and the properties extractor."""

import pytest
import requests

from crmshift.errors import (
    CatalogError,
    RateLimitedError,
    TokenExchangeFailedError,
    UnauthorizedError,
    UpstreamUnavailableError,
)
from crmshift.extractors.base import parse_retry_after
from crmshift.models.schema import PropertyFilter
from crmshift.models.session import Tenant
from crmshift.services.catalog import normalize_object_type

from .conftest import TOKEN_PATH, USER, FakeResponse

CONTACTS_PATH = "/crm/v3/properties/contacts"


@pytest.fixture
def source():
    return Tenant.source(USER)


@pytest.fixture
def seeded_crm(crm):
    crm.add_property("a", "contacts", "email", "Email", built_in=True)
    crm.add_property("a", "contacts", "favorite_color", "Favorite Color")
    crm.add_property("a", "deals", "amount", "Amount", type="number", field_type="number", built_in=True)
    return crm


class TestListProperties:
    """Tests for listing and caching."""

    def test_lists_and_filters(self, catalog, seeded_crm, source):
        everything = catalog.list_properties(source, "contacts")
        custom = catalog.list_properties(source, "contacts", property_type=PropertyFilter.CUSTOM)
        defaults = catalog.list_properties(source, "contacts", property_type="default")

        assert [d.internal_name for d in everything] == ["email", "favorite_color"]
        assert [d.internal_name for d in custom] == ["favorite_color"]
        assert [d.internal_name for d in defaults] == ["email"]
        assert seeded_crm.count("GET", CONTACTS_PATH) == 1

    def test_synonyms_share_one_cache_entry(self, catalog, seeded_crm, source):
        catalog.list_properties(source, "deal")
        catalog.list_properties(source, "Deals")

        assert seeded_crm.count("GET", "/crm/v3/properties/deals") == 1
        assert normalize_object_type(" LineItem ") == "line_items"

    def test_cache_expires_after_ttl(self, catalog, seeded_crm, source, clock):
        catalog.list_properties(source, "contacts")
        clock.advance(599)
        catalog.list_properties(source, "contacts")
        clock.advance(2)
        catalog.list_properties(source, "contacts")

        assert seeded_crm.count("GET", CONTACTS_PATH) == 2

    def test_force_refresh_bypasses_cache(self, catalog, seeded_crm, source):
        catalog.list_properties(source, "contacts")
        catalog.list_properties(source, "contacts", force_refresh=True)

        assert seeded_crm.count("GET", CONTACTS_PATH) == 2

    def test_tenants_are_cached_separately(self, catalog, seeded_crm, source):
        catalog.list_properties(source, "contacts")
        catalog.list_properties(Tenant.target(USER), "contacts")

        assert seeded_crm.count("GET", CONTACTS_PATH) == 2

    def test_invalidate(self, catalog, seeded_crm, source):
        catalog.list_properties(source, "contacts")
        catalog.list_properties(source, "deals")

        assert catalog.invalidate(source, "contact") == 1
        assert catalog.invalidate() == 1

    def test_list_many_keeps_request_order(self, catalog, seeded_crm, source):
        result = catalog.list_many(source, ["deal", "contacts", "deals"])

        assert list(result.keys()) == ["deals", "contacts"]
        assert [d.internal_name for d in result["deals"]] == ["amount"]

    def test_summarize(self, catalog, seeded_crm, source):
        counts = catalog.summarize(catalog.list_properties(source, "contacts"))
        assert counts == {"total": 2, "default": 1, "custom": 1}


class TestUpstreamFailures:
    """Tests for error classification and the single 401 retry."""

    def test_401_refreshes_and_retries_once(self, catalog, seeded_crm, source):
        seeded_crm.queue("GET", CONTACTS_PATH, FakeResponse(401, {"message": "expired"}))

        definitions = catalog.list_properties(source, "contacts")

        assert len(definitions) == 2
        assert seeded_crm.token_calls == 2
        assert seeded_crm.count("GET", CONTACTS_PATH) == 2

    def test_second_401_is_surfaced(self, catalog, seeded_crm, source):
        seeded_crm.queue("GET", CONTACTS_PATH,
                         FakeResponse(401, {"message": "expired"}), FakeResponse(401, {"message": "expired"}))

        with pytest.raises(UnauthorizedError) as exc_info:
            catalog.list_properties(source, "contacts")
        assert exc_info.value.status_code == 401
        assert seeded_crm.count("GET", CONTACTS_PATH) == 2

    def test_429_is_not_retried(self, catalog, seeded_crm, source):
        seeded_crm.queue("GET", CONTACTS_PATH, FakeResponse(429, {"message": "slow down"}, {"Retry-After": "7"}))

        with pytest.raises(RateLimitedError) as exc_info:
            catalog.list_properties(source, "contacts")
        assert exc_info.value.retry_after == 7.0
        assert seeded_crm.count("GET", CONTACTS_PATH) == 1

    def test_5xx_is_upstream_unavailable(self, catalog, seeded_crm, source):
        seeded_crm.queue("GET", CONTACTS_PATH, FakeResponse(502, {"message": "bad gateway"}))

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            catalog.list_properties(source, "contacts")
        assert exc_info.value.status_code == 503

    def test_timeout_is_upstream_unavailable(self, catalog, seeded_crm, source):
        seeded_crm.queue("GET", CONTACTS_PATH, requests.exceptions.Timeout("read timed out"))

        with pytest.raises(UpstreamUnavailableError):
            catalog.list_properties(source, "contacts")

    def test_unknown_object_type_is_404(self, catalog, seeded_crm, source):
        seeded_crm.queue("GET", "/crm/v3/properties/widgets", FakeResponse(404, {"message": "Unknown object"}))

        with pytest.raises(CatalogError) as exc_info:
            catalog.list_properties(source, "widgets")
        assert exc_info.value.status_code == 404

    def test_failures_are_not_cached(self, catalog, seeded_crm, source):
        seeded_crm.queue("GET", CONTACTS_PATH, FakeResponse(500, {"message": "boom"}))
        with pytest.raises(UpstreamUnavailableError):
            catalog.list_properties(source, "contacts")

        assert len(catalog.list_properties(source, "contacts")) == 2

    def test_get_property_returns_none_on_404(self, catalog, seeded_crm, source):
        assert catalog.get_property(source, "contacts", "missing") is None
        assert catalog.get_property(source, "contact", "favorite_color").label == "Favorite Color"

    def test_token_failure_propagates(self, catalog, seeded_crm, source):
        seeded_crm.queue("POST", TOKEN_PATH, FakeResponse(400, {"message": "invalid_grant"}))

        with pytest.raises(TokenExchangeFailedError):
            catalog.list_properties(source, "contacts")


class TestRetryAfter:
    def test_seconds_and_garbage(self):
        assert parse_retry_after("3") == 3.0
        assert parse_retry_after(None) is None
        assert parse_retry_after("not a date") is None
