from __future__ import annotations

from typing import Iterable

from ..config import PublishingConfig
from ..errors import ValidationFailed
from ..models import Platform
from .base import PlatformAdapter
from .http import HttpClient, Transport
from .shopify import ShopifyAdapter
from .webflow import WebflowAdapter
from .wordpress import WordPressAdapter


class AdapterRegistry:
    def __init__(self, adapters: Iterable[PlatformAdapter] = ()) -> None:
        self._adapters: dict[Platform, PlatformAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: PlatformAdapter) -> None:
        self._adapters[adapter.platform] = adapter

    def get(self, platform: Platform | str) -> PlatformAdapter:
        key = Platform.parse(platform)
        adapter = self._adapters.get(key)
        if adapter is None:
            raise ValidationFailed(f"no adapter registered for platform {key.value}")
        return adapter

    def platforms(self) -> list[Platform]:
        return sorted(self._adapters, key=lambda platform: platform.value)


def build_default_registry(
    config: PublishingConfig, http: Transport | None = None
) -> AdapterRegistry:
    transport = http or HttpClient(
        user_agent=config.user_agent, timeout=config.http_timeout_seconds
    )
    timeout = config.http_timeout_seconds
    return AdapterRegistry(
        [
            WordPressAdapter(transport, timeout),
            ShopifyAdapter(transport, timeout, api_version=config.shopify_api_version),
            WebflowAdapter(transport, timeout, api_base=config.webflow_api_base),
        ]
    )
