from __future__ import annotations

from typing import Any

from ..errors import PipelineError
from ..models import Platform, PublishRequest, PublishResult
from .auth import OAUTH, Auth
from .base import PlatformAdapter
from .http import Transport, error_message, with_query
from .markup import excerpt, render_html


class WebflowAdapter(PlatformAdapter):
    platform = Platform.WEBFLOW
    supported_auth = (OAUTH,)

    def __init__(
        self, http: Transport, timeout: float = 30, api_base: str = "https://api.webflow.com"
    ) -> None:
        super().__init__(http, timeout)
        self.api_base = api_base.rstrip("/") + "/v2"

    def missing_fields(self, credentials: dict[str, str]) -> list[str]:
        return [name for name in ("access_token", "collectionId") if not credentials.get(name)]

    def _publish(
        self, request: PublishRequest, credentials: dict[str, str], auth: Auth
    ) -> PublishResult:
        collection_id = credentials["collectionId"]
        headers = self.auth_headers(auth)
        published = request.status == "published"
        body = {
            "isArchived": False,
            "isDraft": not published,
            "fieldData": {
                "name": request.title,
                "slug": request.slug,
                "post-body": render_html(request.content),
                "post-summary": excerpt(request.content, request.meta_description),
            },
        }
        response = self._send("POST", f"{self.api_base}/collections/{collection_id}/items", headers, body)
        if not response.ok:
            return self._rejected(response)
        item = response.json() or {}
        item_id = item.get("id")
        warnings: list[str] = []
        if published and item_id:
            warnings.extend(self._publish_item(collection_id, str(item_id), headers))
        slug = (item.get("fieldData") or {}).get("slug") or request.slug
        return PublishResult(
            success=True,
            url=self._item_url(credentials, slug),
            post_id=str(item_id) if item_id is not None else None,
            warnings=warnings,
        )

    def _publish_item(self, collection_id: str, item_id: str, headers: dict[str, str]) -> list[str]:
        # The item already exists at this point; a failed site publish must not fail the whole call.
        try:
            response = self._send(
                "POST", f"{self.api_base}/collections/{collection_id}/items/{item_id}/publish", headers, {}
            )
        except PipelineError as exc:
            return [f"item_publish_failed: {exc.message}"]
        if not response.ok:
            return [f"item_publish_failed: {error_message(response)}"]
        return []

    def find_existing(
        self, request: PublishRequest, credentials: dict[str, str], auth: Auth
    ) -> PublishResult | None:
        if self.missing_fields(credentials):
            return None
        url = with_query(
            f"{self.api_base}/collections/{credentials['collectionId']}/items", slug=request.slug
        )
        response = self._send("GET", url, self.auth_headers(auth))
        self._raise_for_status(response)
        items = (response.json() or {}).get("items") or []
        for item in items:
            if (item.get("fieldData") or {}).get("slug") == request.slug:
                return PublishResult(
                    success=True,
                    url=self._item_url(credentials, request.slug),
                    post_id=str(item.get("id")) if item.get("id") is not None else None,
                )
        return None

    def test_connection(self, credentials: dict[str, str], auth: Auth) -> dict[str, Any]:
        missing = self.missing_fields(credentials)
        if missing:
            return {"ok": False, "error": f"missing credential fields: {', '.join(missing)}"}
        if credentials.get("siteId"):
            url = f"{self.api_base}/sites/{credentials['siteId']}"
        else:
            url = f"{self.api_base}/collections/{credentials['collectionId']}"
        response = self._send("GET", url, self.auth_headers(auth))
        if not response.ok:
            return {"ok": False, "status": response.status, "error": error_message(response)}
        payload = response.json() or {}
        return {"ok": True, "status": response.status, "detail": {"name": payload.get("displayName")}}

    def _item_url(self, credentials: dict[str, str], slug: str) -> str | None:
        site_url = credentials.get("url")
        if not site_url:
            return None
        return f"{site_url.rstrip('/')}/{slug}"
