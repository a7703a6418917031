"""Tests for OnePasswordProvider - Connect API and op CLI fallback."""

import json
import subprocess
from types import SimpleNamespace
from unittest.mock import MagicMock

import requests

from runtime_secrets.providers.base import LoadStatus
from runtime_secrets.providers.onepassword import OnePasswordProvider

VAULT_ID = "abcdefghijklmnopqrstuvwxyz"
HOST = "https://op-connect.local"


def _response(status_code=200, body=None):
    return SimpleNamespace(status_code=status_code, json=lambda: body)


def _completed(returncode=0, stdout=""):
    return subprocess.CompletedProcess([], returncode, stdout=stdout, stderr="")


def _connect_session(item_fields, vaults=None):
    """Fake requests session serving health, vault listing and one item."""
    session = MagicMock()

    def get(url, headers=None, params=None, timeout=None):
        if url == f"{HOST}/health":
            return _response(200)
        if url == f"{HOST}/v1/vaults":
            return _response(200, vaults or [])
        if url.endswith("/items"):
            return _response(200, [{"id": "item1"}])
        if url.endswith("/items/item1"):
            return _response(200, {"fields": item_fields})
        return _response(404)

    session.get.side_effect = get
    return session


def _provider(environ, session=None, runner=None, op_path=None, **overrides):
    environ.update({"OP_ENABLED": "true", **overrides})
    return OnePasswordProvider.from_env(
        environ,
        session=session or MagicMock(),
        runner=runner or MagicMock(),
        which=lambda name: op_path,
    )


CONNECT_ENV = {
    "OP_CONNECT_HOST": HOST,
    "OP_CONNECT_TOKEN": "connect-token",
    "OP_VAULT": VAULT_ID,
    "OP_ITEM_NAMES": "Database",
}


class TestConnect:
    """Test the Connect server path."""

    def test_loads_item_fields(self, environ):
        session = _connect_session(
            [
                {"label": "db password", "value": "pw"},
                {"label": "username", "value": "admin"},
                {"label": "notes", "value": None},
            ]
        )

        provider = _provider(environ, session=session, OP_SECRET_PREFIX="APP_", **CONNECT_ENV)

        assert provider.load() is LoadStatus.SUCCESS
        assert environ["APP_DB_PASSWORD"] == "pw"
        assert environ["APP_USERNAME"] == "admin"
        assert "APP_NOTES" not in environ

    def test_item_lookup_uses_title_filter_and_bearer_token(self, environ):
        session = _connect_session([{"label": "k", "value": "v"}])

        _provider(environ, session=session, **CONNECT_ENV).load()

        items_call = next(
            c for c in session.get.call_args_list if c[0][0].endswith("/items")
        )
        assert items_call[1]["params"] == {"filter": 'title eq "Database"'}
        assert items_call[1]["headers"] == {"Authorization": "Bearer connect-token"}

    def test_vault_name_is_resolved(self, environ):
        session = _connect_session(
            [{"label": "k", "value": "v"}],
            vaults=[{"name": "Other", "id": "x"}, {"name": "Prod", "id": "prodvaultid"}],
        )

        _provider(environ, session=session, **{**CONNECT_ENV, "OP_VAULT": "Prod"}).load()

        urls = [c[0][0] for c in session.get.call_args_list]
        assert f"{HOST}/v1/vaults/prodvaultid/items" in urls

    def test_unhealthy_server_falls_back_to_cli(self, environ):
        session = MagicMock()
        session.get.return_value = _response(503)
        item = {"fields": [{"label": "api-key", "value": "from-cli"}]}
        runner = MagicMock(return_value=_completed(stdout=json.dumps(item)))

        provider = _provider(
            environ,
            session=session,
            runner=runner,
            op_path="/usr/bin/op",
            OP_SERVICE_ACCOUNT_TOKEN="ops_token",
            **CONNECT_ENV,
        )

        assert provider.load() is LoadStatus.SUCCESS
        assert environ["API_KEY"] == "from-cli"

    def test_connect_failure_without_cli_is_transport_failure(self, environ):
        session = MagicMock()
        session.get.side_effect = requests.exceptions.ConnectionError("refused")

        provider = _provider(environ, session=session, **CONNECT_ENV)

        assert provider.load() is LoadStatus.AUTH_FAILURE

    def test_response_bodies_are_not_logged(self, environ, leak_marker, assert_no_leak):
        session = _connect_session([{"label": "token", "value": leak_marker}])

        _provider(environ, session=session, **CONNECT_ENV).load()

        assert environ["TOKEN"] == leak_marker
        assert_no_leak()


class TestCLI:
    """Test the op CLI path."""

    def test_item_name_is_a_single_argv_element(self, environ):
        item = {"fields": [{"label": "password", "value": "pw"}]}
        runner = MagicMock(return_value=_completed(stdout=json.dumps(item)))

        provider = _provider(
            environ,
            runner=runner,
            op_path="/usr/bin/op",
            OP_SERVICE_ACCOUNT_TOKEN="ops_token",
            OP_ITEM_NAMES="My Item; rm -rf /",
            OP_VAULT="Prod",
        )

        assert provider.load() is LoadStatus.SUCCESS
        argv = runner.call_args[0][0]
        assert argv == [
            "/usr/bin/op",
            "item",
            "get",
            "My Item; rm -rf /",
            "--format=json",
            "--vault=Prod",
        ]
        assert runner.call_args[1]["env"]["OP_SERVICE_ACCOUNT_TOKEN"] == "ops_token"
        assert "shell" not in runner.call_args[1]
        assert environ["PASSWORD"] == "pw"

    def test_secret_reference_uses_last_segment(self, environ):
        runner = MagicMock(return_value=_completed(stdout="s3cr3t\n"))

        provider = _provider(
            environ,
            runner=runner,
            op_path="/usr/bin/op",
            OP_SERVICE_ACCOUNT_TOKEN="ops_token",
            OP_SECRET_REFERENCES="op://Prod/Stripe/api key",
        )

        assert provider.load() is LoadStatus.SUCCESS
        assert runner.call_args[0][0] == ["/usr/bin/op", "read", "op://Prod/Stripe/api key"]
        assert environ["API_KEY"] == "s3cr3t"

    def test_failed_reference_is_skipped(self, environ):
        runner = MagicMock(side_effect=[_completed(returncode=1), _completed(stdout="ok")])

        provider = _provider(
            environ,
            runner=runner,
            op_path="/usr/bin/op",
            OP_SERVICE_ACCOUNT_TOKEN="ops_token",
            OP_SECRET_REFERENCES="op://v/i/missing,op://v/i/present",
        )

        assert provider.load() is LoadStatus.SUCCESS
        assert "MISSING" not in environ
        assert environ["PRESENT"] == "ok"

    def test_no_session_is_auth_failure(self, environ):
        runner = MagicMock(return_value=_completed(returncode=1))

        provider = _provider(
            environ, runner=runner, op_path="/usr/bin/op", OP_ITEM_NAMES="Database"
        )

        assert provider.load() is LoadStatus.AUTH_FAILURE
        assert runner.call_args[0][0] == ["/usr/bin/op", "account", "get"]

    def test_missing_cli_is_not_configured(self, environ):
        provider = _provider(environ, OP_ITEM_NAMES="Database")
        assert provider.load() is LoadStatus.NOT_CONFIGURED

    def test_unparseable_item_is_not_logged(self, environ, leak_marker, assert_no_leak):
        runner = MagicMock(return_value=_completed(stdout=f"not json {leak_marker}"))

        provider = _provider(
            environ,
            runner=runner,
            op_path="/usr/bin/op",
            OP_SERVICE_ACCOUNT_TOKEN="ops_token",
            OP_ITEM_NAMES="Database",
        )

        assert provider.load() is LoadStatus.SUCCESS
        assert_no_leak()


class TestHealth:
    """Test 1Password health probes."""

    def test_connect_health(self, environ):
        session = MagicMock()
        session.get.return_value = _response(200)
        provider = _provider(environ, session=session, **CONNECT_ENV)
        assert provider.health_check() is True

    def test_unreachable(self, environ):
        provider = _provider(environ, OP_ITEM_NAMES="Database")
        assert provider.health_check() is False

    def test_disabled_is_healthy(self):
        provider = OnePasswordProvider.from_env({}, which=lambda name: None)
        assert provider.health_check() is True
