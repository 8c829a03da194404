from __future__ import annotations

import threading
from typing import Any

from ..errors import ValidationFailed
from ..models import Platform, PublishRequest, PublishResult
from .auth import OAUTH, Auth, OAuthAuth
from .base import PlatformAdapter
from .http import Transport, error_message, with_query
from .markup import excerpt, render_html


class ShopifyAdapter(PlatformAdapter):
    platform = Platform.SHOPIFY
    supported_auth = (OAUTH,)

    def __init__(self, http: Transport, timeout: float = 30, api_version: str = "2024-01") -> None:
        super().__init__(http, timeout)
        self.api_version = api_version
        self._blogs: dict[str, tuple[str, str]] = {}
        self._blogs_lock = threading.Lock()

    def missing_fields(self, credentials: dict[str, str]) -> list[str]:
        return [name for name in ("shop", "access_token") if not credentials.get(name)]

    def auth_headers(self, auth: Auth) -> dict[str, str]:
        if isinstance(auth, OAuthAuth):
            return {"X-Shopify-Access-Token": auth.access_token}
        return super().auth_headers(auth)

    def _publish(
        self, request: PublishRequest, credentials: dict[str, str], auth: Auth
    ) -> PublishResult:
        shop = shop_domain(credentials["shop"])
        headers = self.auth_headers(auth)
        blog_id, blog_handle = self._blog(shop, credentials, headers)
        article: dict[str, Any] = {
            "title": request.title,
            "body_html": render_html(request.content),
            "summary_html": excerpt(request.content, request.meta_description),
            "handle": request.slug,
            "published": request.status == "published",
        }
        if request.meta_title:
            article["metafields_global_title_tag"] = request.meta_title
        if request.meta_description:
            article["metafields_global_description_tag"] = request.meta_description
        if request.featured_image_url:
            article["image"] = {"src": request.featured_image_url}
        response = self._send(
            "POST",
            f"{self._api_base(shop)}/blogs/{blog_id}/articles.json",
            headers,
            {"article": article},
        )
        if not response.ok:
            return self._rejected(response)
        created = (response.json() or {}).get("article") or {}
        return self._result(shop, blog_handle, created, request.slug)

    def find_existing(
        self, request: PublishRequest, credentials: dict[str, str], auth: Auth
    ) -> PublishResult | None:
        if self.missing_fields(credentials):
            return None
        shop = shop_domain(credentials["shop"])
        headers = self.auth_headers(auth)
        blog_id, blog_handle = self._blog(shop, credentials, headers)
        url = with_query(
            f"{self._api_base(shop)}/blogs/{blog_id}/articles.json", handle=request.slug
        )
        response = self._send("GET", url, headers)
        self._raise_for_status(response)
        articles = (response.json() or {}).get("articles") or []
        if not articles:
            return None
        return self._result(shop, blog_handle, articles[0], request.slug)

    def test_connection(self, credentials: dict[str, str], auth: Auth) -> dict[str, Any]:
        missing = self.missing_fields(credentials)
        if missing:
            return {"ok": False, "error": f"missing credential fields: {', '.join(missing)}"}
        shop = shop_domain(credentials["shop"])
        response = self._send("GET", f"{self._api_base(shop)}/shop.json", self.auth_headers(auth))
        if not response.ok:
            return {"ok": False, "status": response.status, "error": error_message(response)}
        info = (response.json() or {}).get("shop") or {}
        return {"ok": True, "status": response.status, "detail": {"name": info.get("name")}}

    def _blog(self, shop: str, credentials: dict[str, str], headers: dict[str, str]) -> tuple[str, str]:
        configured = credentials.get("blogId")
        with self._blogs_lock:
            cached = self._blogs.get(shop)
        if cached and (not configured or cached[0] == configured):
            return cached
        response = self._send("GET", f"{self._api_base(shop)}/blogs.json", headers)
        self._raise_for_status(response)
        blogs = (response.json() or {}).get("blogs") or []
        chosen = None
        for blog in blogs:
            if not configured or str(blog.get("id")) == configured:
                chosen = blog
                break
        if chosen is None:
            if configured:
                return configured, "news"
            raise ValidationFailed("shopify store has no blog to publish into")
        resolved = (str(chosen.get("id")), str(chosen.get("handle") or "news"))
        with self._blogs_lock:
            self._blogs[shop] = resolved
        return resolved

    def _api_base(self, shop: str) -> str:
        return f"https://{shop}/admin/api/{self.api_version}"

    def _result(
        self, shop: str, blog_handle: str, article: dict[str, Any], fallback_handle: str
    ) -> PublishResult:
        article_id = article.get("id")
        handle = article.get("handle") or fallback_handle
        return PublishResult(
            success=True,
            url=f"https://{shop}/blogs/{blog_handle}/{handle}",
            post_id=str(article_id) if article_id is not None else None,
        )


def shop_domain(shop: str) -> str:
    value = shop.strip().lower()
    for prefix in ("https://", "http://"):
        if value.startswith(prefix):
            value = value[len(prefix) :]
    value = value.strip("/")
    if "." not in value:
        value = f"{value}.myshopify.com"
    return value
