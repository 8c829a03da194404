import pytest

from autoseo.models import Platform, PublishRequest
from autoseo.publishing.auth import OAuthAuth
from autoseo.publishing.shopify import ShopifyAdapter, shop_domain
from autoseo.publishing.webflow import WebflowAdapter

REQUEST = PublishRequest(
    title="Best CRM",
    content="# Best CRM\n\nA CRM keeps customers in one place.",
    status="published",
    slug="best-crm",
    meta_description="Compare CRM tools.",
    featured_image_url="https://cdn.acme.test/crm.png",
)
TOKEN = OAuthAuth(access_token="shpat_123")


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("acme", "acme.myshopify.com"),
        ("https://Acme.myshopify.com/", "acme.myshopify.com"),
        ("shop.acme.test", "shop.acme.test"),
    ],
)
def test_shop_domain(raw, expected):
    assert shop_domain(raw) == expected


def test_shopify_publishes_into_first_blog(transport):
    transport.add("GET", "/blogs.json", {"blogs": [{"id": 7, "handle": "journal"}]})
    transport.add("POST", "/blogs/7/articles.json", {"article": {"id": 99, "handle": "best-crm"}}, status=201)
    adapter = ShopifyAdapter(transport, api_version="2024-01")
    credentials = {"shop": "acme", "access_token": "shpat_123"}

    result = adapter.publish(REQUEST, credentials, TOKEN)

    assert result.success is True
    assert result.post_id == "99"
    assert result.url == "https://acme.myshopify.com/blogs/journal/best-crm"
    post = transport.matching("POST", "/articles.json")[0]
    assert post.url == "https://acme.myshopify.com/admin/api/2024-01/blogs/7/articles.json"
    assert post.headers == {"X-Shopify-Access-Token": "shpat_123"}
    assert post.body["article"]["published"] is True
    assert post.body["article"]["image"] == {"src": "https://cdn.acme.test/crm.png"}

    adapter.publish(REQUEST, credentials, TOKEN)
    assert len(transport.matching("GET", "/blogs.json")) == 1


def test_shopify_missing_fields(transport):
    adapter = ShopifyAdapter(transport)
    assert adapter.missing_fields({"shop": "acme"}) == ["access_token"]
    result = adapter.publish(REQUEST, {"shop": "acme"}, TOKEN)
    assert result.error_code == "ValidationFailed"
    assert transport.calls == []


def test_shopify_find_existing(transport):
    transport.add("GET", "/blogs.json", {"blogs": [{"id": 7, "handle": "news"}]})
    transport.add("GET", "/blogs/7/articles.json", {"articles": [{"id": 99, "handle": "best-crm"}]})
    adapter = ShopifyAdapter(transport)

    found = adapter.find_existing(REQUEST, {"shop": "acme", "access_token": "t"}, TOKEN)

    assert found.post_id == "99"
    assert "handle=best-crm" in transport.matching("GET", "/articles.json")[0].url


def _webflow_credentials():
    return {"access_token": "wf", "collectionId": "c1", "url": "https://www.acme.test/blog"}


def test_webflow_creates_and_publishes_item(transport):
    transport.add("POST", "/collections/c1/items/i1/publish", {})
    transport.add("POST", "/collections/c1/items", {"id": "i1", "fieldData": {"slug": "best-crm"}})
    adapter = WebflowAdapter(transport)

    result = adapter.publish(REQUEST, _webflow_credentials(), OAuthAuth(access_token="wf"))

    assert result.success is True
    assert result.post_id == "i1"
    assert result.url == "https://www.acme.test/blog/best-crm"
    assert result.warnings == []
    create = transport.calls[0]
    assert create.url == "https://api.webflow.com/v2/collections/c1/items"
    assert create.headers["Authorization"] == "Bearer wf"
    assert create.body["isDraft"] is False
    assert create.body["fieldData"]["slug"] == "best-crm"
    assert len(transport.matching("POST", "/items/i1/publish")) == 1


def test_webflow_item_publish_failure_is_a_warning(transport):
    transport.add("POST", "/collections/c1/items/i1/publish", {"message": "site not published"}, status=409)
    transport.add("POST", "/collections/c1/items", {"id": "i1"})
    adapter = WebflowAdapter(transport)

    result = adapter.publish(REQUEST, _webflow_credentials(), OAuthAuth(access_token="wf"))

    assert result.success is True
    assert result.warnings == ["item_publish_failed: site not published"]


def test_webflow_draft_skips_item_publish(transport):
    transport.add("POST", "/collections/c1/items", {"id": "i1"})
    adapter = WebflowAdapter(transport)
    draft = PublishRequest(title="Best CRM", content="", status="draft", slug="best-crm")

    adapter.publish(draft, _webflow_credentials(), OAuthAuth(access_token="wf"))

    assert transport.calls[0].body["isDraft"] is True
    assert len(transport.calls) == 1


def test_webflow_find_existing_matches_slug(transport):
    transport.add(
        "GET",
        "/collections/c1/items",
        {"items": [{"id": "i0", "fieldData": {"slug": "other"}}, {"id": "i1", "fieldData": {"slug": "best-crm"}}]},
    )
    adapter = WebflowAdapter(transport)

    found = adapter.find_existing(REQUEST, _webflow_credentials(), OAuthAuth(access_token="wf"))

    assert found.post_id == "i1"


def test_registry_lookup(registry):
    assert registry.platforms() == [Platform.SHOPIFY, Platform.WEBFLOW, Platform.WORDPRESS]
    assert isinstance(registry.get("webflow"), WebflowAdapter)
    assert registry.get(Platform.SHOPIFY).api_version == "2024-01"
