import re

import pytest

from autoseo.errors import AuthExpired, NotFound, ValidationFailed
from autoseo.services.credential_store import CredentialStore
from autoseo.services.integrations_service import (
    create_or_update_integration,
    delete_integration,
    generate_integration_key,
    integration_to_dict,
    regenerate_integration_key,
    set_integration_active,
    validate_integration_key,
)
from autoseo.services.oauth_service import refresh_grant


def test_integration_key_format():
    keys = {generate_integration_key() for _ in range(20)}
    assert len(keys) == 20
    assert all(re.fullmatch(r"rk_[0-9a-f]{48}", key) for key in keys)


def test_validate_key(conn, wordpress):
    found = validate_integration_key(conn, wordpress.integration_key)
    assert found.id == wordpress.id

    with pytest.raises(ValidationFailed):
        validate_integration_key(conn, "rk_short")
    with pytest.raises(NotFound):
        validate_integration_key(conn, generate_integration_key())


def test_regenerated_key_replaces_old(conn, wordpress):
    new_key = regenerate_integration_key(conn, wordpress.id)

    assert new_key != wordpress.integration_key
    assert validate_integration_key(conn, new_key).id == wordpress.id
    with pytest.raises(NotFound):
        validate_integration_key(conn, wordpress.integration_key)


def test_inactive_integration_key_is_rejected(conn, wordpress):
    set_integration_active(conn, wordpress.id, False)
    with pytest.raises(NotFound):
        validate_integration_key(conn, wordpress.integration_key)


def test_upsert_keeps_identity_and_key(conn, project, wordpress):
    updated = create_or_update_integration(
        conn, project.id, "WordPress", {"url": "https://new.acme.test", "username": "editor"}
    )

    assert updated.id == wordpress.id
    assert updated.integration_key == wordpress.integration_key
    assert updated.credentials_version == wordpress.credentials_version + 1
    credentials, _ = CredentialStore(conn).load(updated.id)
    assert credentials["url"] == "https://new.acme.test"


def test_upsert_without_credentials_keeps_them(conn, project, wordpress):
    create_or_update_integration(conn, project.id, "wordpress", None, is_active=False)

    credentials, _ = CredentialStore(conn).load(wordpress.id)
    assert credentials["url"] == "https://blog.acme.test"


def test_unknown_platform_is_rejected(conn, project):
    with pytest.raises(ValidationFailed):
        create_or_update_integration(conn, project.id, "ghost", {})


def test_dict_view_redacts_secrets(conn, project):
    integration = create_or_update_integration(
        conn, project.id, "shopify", {"shop": "acme", "access_token": "shpat_abcdef123456"}
    )
    credentials, _ = CredentialStore(conn).load(integration.id)

    view = integration_to_dict(integration, credentials)

    assert view["credentials"] == {"shop": "acme", "access_token": "...3456"}
    assert view["integration_key"] == integration.integration_key


def test_delete_integration(conn, wordpress):
    delete_integration(conn, wordpress.id)
    with pytest.raises(NotFound):
        delete_integration(conn, wordpress.id)


def test_refresh_grant_rotates_tokens(conn, project):
    integration = create_or_update_integration(
        conn,
        project.id,
        "wordpress",
        {"url": "https://blog.acme.test", "access_token": "a1", "refresh_token": "r1"},
    )

    granted = refresh_grant(conn, "r1")

    assert granted["token_type"] == "Bearer"
    assert granted["expires_in"] == 3600
    assert granted["refresh_token"] != "r1"
    credentials, _ = CredentialStore(conn).load(integration.id)
    assert credentials["access_token"] == granted["access_token"]
    assert credentials["refresh_token"] == granted["refresh_token"]

    with pytest.raises(AuthExpired):
        refresh_grant(conn, "r1")
    assert refresh_grant(conn, granted["refresh_token"])["access_token"] != granted["access_token"]


def test_refresh_grant_requires_token(conn):
    with pytest.raises(ValidationFailed):
        refresh_grant(conn, "  ")
