"""Tests for authentication state and credential resolution."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import SecretStr

from prdashboard.conf.github import GitHubSettings
from prdashboard.errors import AuthenticationError
from prdashboard.services.github.auth import AuthProvider, AuthState, authenticate_from_settings


def test_auth_state_requires_token_and_username():
    assert AuthState(access_token="t", username="octocat").is_authenticated
    assert not AuthState(access_token="t").is_authenticated
    assert not AuthState(username="octocat").is_authenticated
    assert not AuthState().is_authenticated


def test_sign_in_and_sign_out_notify_subscribers():
    provider = AuthProvider()
    events: list[AuthState] = []
    provider.subscribe(events.append)

    provider.sign_in(SecretStr("token"), "octocat")
    provider.sign_out()
    provider.sign_out()

    assert [e.is_authenticated for e in events] == [True, False]
    assert events[0].access_token == "token"
    assert provider.access_token is None


def test_sign_in_rejects_empty_credentials():
    with pytest.raises(AuthenticationError):
        AuthProvider().sign_in("", "octocat")


def test_unsubscribe_stops_notifications():
    provider = AuthProvider()
    events: list[AuthState] = []
    unsubscribe = provider.subscribe(events.append)
    unsubscribe()
    provider.sign_in("token", "octocat")
    assert events == []


@pytest.mark.asyncio
async def test_authenticate_uses_settings():
    settings = GitHubSettings(_env_file=None, github_token=SecretStr("settings-token"), github_username="octocat")
    client = MagicMock()

    state = await authenticate_from_settings(settings, client)

    assert state == AuthState(access_token="settings-token", username="octocat")
    client.update_token.assert_called_once_with("settings-token")


@pytest.mark.asyncio
async def test_authenticate_overrides_take_precedence():
    settings = GitHubSettings(_env_file=None, github_token=SecretStr("settings-token"), github_username="octocat")
    client = MagicMock()

    state = await authenticate_from_settings(settings, client, token_override="cli-token", username_override="hubot")

    assert state == AuthState(access_token="cli-token", username="hubot")


@pytest.mark.asyncio
async def test_authenticate_discovers_username():
    settings = GitHubSettings(_env_file=None, github_token=SecretStr("settings-token"))
    client = MagicMock()
    client.get_viewer_login = AsyncMock(return_value="token-owner")

    state = await authenticate_from_settings(settings, client)

    assert state.username == "token-owner"
    assert state.is_authenticated


@pytest.mark.asyncio
async def test_authenticate_without_token_fails(monkeypatch):
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    settings = GitHubSettings(_env_file=None)
    with pytest.raises(AuthenticationError, match="not configured"):
        await authenticate_from_settings(settings, MagicMock())
