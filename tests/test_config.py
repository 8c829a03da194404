import copy

import pytest

from autoseo.config import (
    DEFAULT_CONFIG,
    ConfigError,
    bootstrap_runtime_config,
    get_runtime_config,
    load_runtime_config,
    set_runtime_config,
)
from autoseo.models import QUEUE_NAMES, QUEUE_PUBLISHING


def test_bootstrap_creates_runtime_config(conn):
    cfg = bootstrap_runtime_config(conn)
    assert cfg == DEFAULT_CONFIG


def test_get_runtime_config_after_set(conn):
    custom = copy.deepcopy(DEFAULT_CONFIG)
    custom["app"]["name"] = "Test"
    custom["queues"]["publishing"]["concurrency"] = 9
    set_runtime_config(conn, custom)

    assert get_runtime_config(conn)["app"]["name"] == "Test"
    assert load_runtime_config(conn).queue(QUEUE_PUBLISHING).concurrency == 9


def test_set_runtime_config_rejects_invalid(conn):
    with pytest.raises(ConfigError, match="Invalid config.runtime"):
        set_runtime_config(conn, {"app": {"name": "Bad"}})


def test_set_runtime_config_rejects_bad_queue_settings(conn):
    invalid = copy.deepcopy(DEFAULT_CONFIG)
    invalid["queues"]["publishing"]["concurrency"] = 0
    invalid["queues"]["publishing"]["backoff"]["type"] = "linear"
    with pytest.raises(ConfigError) as excinfo:
        set_runtime_config(conn, invalid)
    assert "concurrency must be >= 1" in str(excinfo.value)
    assert "backoff.type" in str(excinfo.value)


def test_build_config_expands_token_urls(conn):
    custom = copy.deepcopy(DEFAULT_CONFIG)
    custom["app"]["base_url"] = "https://app.example.com/"
    set_runtime_config(conn, custom)

    config = load_runtime_config(conn)

    assert set(config.queues) == set(QUEUE_NAMES)
    assert (
        config.publishing.oauth_token_urls["wordpress"]
        == "https://app.example.com/api/integrations/wordpress/oauth/token"
    )
    assert config.hooks.auto_publish_enabled is True


def test_unknown_queue_is_config_error(config):
    with pytest.raises(ConfigError):
        config.queue("emails")
