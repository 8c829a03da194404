from __future__ import annotations

from typing import Any

from ..models import Platform, PublishRequest, PublishResult
from .auth import BASIC, OAUTH, STATIC_KEY, Auth, BasicAuth
from .base import PlatformAdapter
from .http import error_message, join_url, with_query
from .markup import excerpt, render_html

PLUGIN_PUBLISH_PATH = "/wp-json/rankyak/v1/publish"
PLUGIN_TEST_PATH = "/wp-json/rankyak/v1/test"
REST_POSTS_PATH = "/wp-json/wp/v2/posts"
REST_ME_PATH = "/wp-json/wp/v2/users/me"


class WordPressAdapter(PlatformAdapter):
    """Publishes through the companion plugin, or the core REST API with basic auth."""

    platform = Platform.WORDPRESS
    supported_auth = (STATIC_KEY, OAUTH, BASIC)

    def missing_fields(self, credentials: dict[str, str]) -> list[str]:
        return [] if credentials.get("url") else ["url"]

    def _publish(
        self, request: PublishRequest, credentials: dict[str, str], auth: Auth
    ) -> PublishResult:
        base = credentials["url"]
        status = "publish" if request.status == "published" else "draft"
        body: dict[str, Any] = {
            "title": request.title,
            "slug": request.slug,
            "content": render_html(request.content),
            "status": status,
            "excerpt": excerpt(request.content, request.meta_description),
        }
        if isinstance(auth, BasicAuth):
            url = join_url(base, REST_POSTS_PATH)
        else:
            url = join_url(base, PLUGIN_PUBLISH_PATH)
            if request.meta_title:
                body["meta_title"] = request.meta_title
            if request.meta_description:
                body["meta_description"] = request.meta_description
            if request.featured_image_url:
                body["featured_image_url"] = request.featured_image_url
        response = self._send("POST", url, self.auth_headers(auth), body)
        if not response.ok:
            return self._rejected(response)
        payload = response.json()
        if not isinstance(payload, dict):
            payload = {}
        if payload.get("success") is False:
            return PublishResult.failed(error_message(response), "PlatformRejected")
        post_id = payload.get("post_id") or payload.get("id")
        return PublishResult(
            success=True,
            url=payload.get("url") or payload.get("link"),
            post_id=str(post_id) if post_id is not None else None,
        )

    def find_existing(
        self, request: PublishRequest, credentials: dict[str, str], auth: Auth
    ) -> PublishResult | None:
        base = credentials.get("url")
        if not base:
            return None
        # The plugin key only authorises plugin routes; core REST sees public posts only.
        headers = self.auth_headers(auth) if isinstance(auth, BasicAuth) else {}
        url = with_query(join_url(base, REST_POSTS_PATH), slug=request.slug, _fields="id,link")
        response = self._send("GET", url, headers)
        self._raise_for_status(response)
        posts = response.json()
        if not isinstance(posts, list) or not posts:
            return None
        post = posts[0]
        return PublishResult(
            success=True,
            url=post.get("link"),
            post_id=str(post.get("id")) if post.get("id") is not None else None,
        )

    def test_connection(self, credentials: dict[str, str], auth: Auth) -> dict[str, Any]:
        missing = self.missing_fields(credentials)
        if missing:
            return {"ok": False, "error": f"missing credential fields: {', '.join(missing)}"}
        path = REST_ME_PATH if isinstance(auth, BasicAuth) else PLUGIN_TEST_PATH
        response = self._send("GET", join_url(credentials["url"], path), self.auth_headers(auth))
        if not response.ok:
            return {"ok": False, "status": response.status, "error": error_message(response)}
        payload = response.json()
        return {"ok": True, "status": response.status, "detail": payload if isinstance(payload, dict) else {}}
