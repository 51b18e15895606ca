"""End-to-end CLI tests through Typer's CliRunner.

The HTTP transport is injected with ``obj={"http_client": ...}``, so every
command runs the real settings resolution, auth provider, rate limiter, and
retry loop against an ``httpx.MockTransport``.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import httpx
import pytest

from snowkit import __version__
from snowkit.app import app
from snowkit.auth import FileTokenStore, storage_key
from snowkit.config import load_global_config
from snowkit.models import OAuthToken

INSTANCE = "https://dev1.service-now.com"
BASIC = ["--instance", INSTANCE, "--username", "admin", "--password", "pw"]


class FakeInstance:
    """A tiny in-memory Table API."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.records = {
            "abc": {"sys_id": "abc", "number": "INC0001", "short_description": "Printer"},
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/oauth_token.do":
            return httpx.Response(
                200, json={"access_token": "tok", "token_type": "Bearer", "expires_in": 1800}
            )
        if path == "/api/now/table/incident" and request.method == "GET":
            return httpx.Response(200, json={"result": list(self.records.values())})
        if path == "/api/now/table/incident" and request.method == "POST":
            record = {"sys_id": "new1", **json.loads(request.content)}
            return httpx.Response(201, json={"result": record})
        if path.startswith("/api/now/table/incident/"):
            sys_id = path.rsplit("/", 1)[1]
            if sys_id not in self.records:
                return httpx.Response(
                    404, json={"error": {"message": "No Record found"}, "status": "failure"}
                )
            if request.method == "DELETE":
                del self.records[sys_id]
                return httpx.Response(204)
            return httpx.Response(200, json={"result": self.records[sys_id]})
        if path == "/api/now/stats/incident":
            if "sysparm_group_by" in request.url.params:
                return httpx.Response(
                    200,
                    json={
                        "result": [
                            {
                                "stats": {"count": "2"},
                                "groupby_fields": [{"field": "priority", "value": "1"}],
                            }
                        ]
                    },
                )
            return httpx.Response(200, json={"result": {"stats": {"count": "7"}}})
        if path == "/api/now/table/empty":
            return httpx.Response(200, json={"result": []})
        if path == "/incident.do":
            return httpx.Response(200, content=b"<xml><incident><number>INC0001</number></incident></xml>")
        return httpx.Response(404, json={"error": {"message": f"no route {path}"}})


@pytest.fixture
def instance() -> FakeInstance:
    return FakeInstance()


@pytest.fixture
def invoke(cli_runner, isolated_config: Path, make_http, instance: FakeInstance):
    http = make_http(instance)

    def _invoke(*args: str, input: str | None = None):
        return cli_runner.invoke(app, ["--no-color", *args], obj={"http_client": http}, input=input)

    return _invoke


class TestRoot:
    def test_version(self, invoke) -> None:
        result = invoke("--version")
        assert result.exit_code == 0
        assert f"snowkit {__version__}" in result.output

    def test_missing_instance(self, invoke) -> None:
        result = invoke("--username", "admin", "--password", "pw", "table", "list", "incident")
        assert result.exit_code == 1
        assert "No instance URL configured" in result.output

    def test_missing_credentials(self, invoke) -> None:
        result = invoke("--instance", INSTANCE, "table", "list", "incident")
        assert result.exit_code == 1
        assert "No valid authentication credentials" in result.output


class TestRequestCommand:
    def test_get_with_params(self, invoke, instance: FakeInstance) -> None:
        result = invoke(
            *BASIC, "--json", "-q", "request", "get", "/table/incident", "-p", "sysparm_limit=1"
        )
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["result"][0]["number"] == "INC0001"
        request = instance.requests[0]
        assert request.method == "GET"
        assert request.url.params["sysparm_limit"] == "1"

    def test_post_body(self, invoke, instance: FakeInstance) -> None:
        result = invoke(
            *BASIC, "--json", "-q", "request", "POST", "/table/incident",
            "--body", '{"short_description": "Disk full"}',
        )
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["result"]["sys_id"] == "new1"

    def test_root_xml(self, invoke, instance: FakeInstance) -> None:
        result = invoke(*BASIC, "--json", "-q", "request", "GET", "/incident.do", "--root", "--xml")
        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == {"xml": {"incident": {"number": "INC0001"}}}
        assert instance.requests[0].headers["Accept"] == "application/xml"

    def test_invalid_method(self, invoke) -> None:
        result = invoke(*BASIC, "request", "TRACE", "/table/incident")
        assert result.exit_code == 2

    def test_invalid_body(self, invoke, instance: FakeInstance) -> None:
        result = invoke(*BASIC, "request", "POST", "/table/incident", "--body", "{nope")
        assert result.exit_code == 2
        assert instance.requests == []


class TestTableCommands:
    def test_list_plain(self, invoke) -> None:
        result = invoke(*BASIC, "--plain", "-q", "table", "list", "incident", "--limit", "5")
        assert result.exit_code == 0, result.output
        lines = result.output.splitlines()
        assert lines[0] == "sys_id\tnumber\tshort_description"
        assert lines[1] == "abc\tINC0001\tPrinter"

    def test_list_passes_query(self, invoke, instance: FakeInstance) -> None:
        invoke(
            *BASIC, "-q", "table", "list", "incident",
            "--query", "active=true", "--fields", "number, short_description",
        )
        params = instance.requests[0].url.params
        assert params["sysparm_query"] == "active=true"
        assert params["sysparm_fields"] == "number,short_description"

    def test_list_empty(self, invoke) -> None:
        result = invoke(*BASIC, "table", "list", "empty")
        assert result.exit_code == 0
        assert "No records found in empty." in result.output

    def test_get_not_found_exit_code(self, invoke) -> None:
        result = invoke(*BASIC, "table", "get", "incident", "missing")
        assert result.exit_code == 4
        assert "No Record found" in result.output

    def test_create_from_fields(self, invoke, instance: FakeInstance) -> None:
        result = invoke(
            *BASIC, "--json", "table", "create", "incident",
            "--field", "short_description=Disk full", "-f", "urgency=2",
        )
        assert result.exit_code == 0, result.output
        assert "Created incident record new1" in result.output
        assert json.loads(instance.requests[0].content) == {
            "short_description": "Disk full",
            "urgency": "2",
        }

    def test_create_requires_fields(self, invoke, instance: FakeInstance) -> None:
        result = invoke(*BASIC, "table", "create", "incident")
        assert result.exit_code == 2
        assert instance.requests == []

    def test_delete_force(self, invoke, instance: FakeInstance) -> None:
        result = invoke(*BASIC, "table", "delete", "incident", "abc", "--force")
        assert result.exit_code == 0, result.output
        assert "Deleted incident record abc" in result.output
        assert "abc" not in instance.records

    def test_delete_declined(self, invoke, instance: FakeInstance) -> None:
        result = invoke(*BASIC, "table", "delete", "incident", "abc", input="n\n")
        assert result.exit_code == 0
        assert "abc" in instance.records
        assert instance.requests == []

    def test_count(self, invoke, instance: FakeInstance) -> None:
        result = invoke(*BASIC, "--json", "-q", "table", "count", "incident", "--query", "active=true")
        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == {"table": "incident", "count": 7}
        assert instance.requests[0].url.params["sysparm_query"] == "active=true"

    def test_count_grouped(self, invoke) -> None:
        result = invoke(*BASIC, "--plain", "-q", "table", "count", "incident", "--group-by", "priority")
        assert result.exit_code == 0, result.output
        assert result.output.splitlines() == ["priority\tcount", "1\t2"]


class TestAuthCommands:
    def test_unauthorized_exit_code(self, cli_runner, isolated_config: Path, make_http) -> None:
        http = make_http(
            lambda request: httpx.Response(401, json={"error": {"message": "User Not Authenticated"}})
        )
        result = cli_runner.invoke(
            app, ["--no-color", *BASIC, "table", "list", "incident"], obj={"http_client": http}
        )
        assert result.exit_code == 3
        assert "User Not Authenticated" in result.output
        assert "snowkit auth status" in result.output

    def test_status_basic(self, invoke) -> None:
        result = invoke(*BASIC, "--json", "auth", "status")
        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == {"instance_url": INSTANCE, "auth_type": "basic"}

    def test_status_oauth_with_cached_token(self, invoke, isolated_config: Path) -> None:
        key = storage_key("oauth_cc", INSTANCE, "cid")
        FileTokenStore().save(
            key,
            OAuthToken(access_token="t", expires_in=60, refresh_token="r").stamped(
                datetime(2020, 1, 1, tzinfo=timezone.utc)
            ),
        )
        result = invoke(
            "--instance", INSTANCE, "--client-id", "cid", "--client-secret", "sec",
            "--json", "auth", "status",
        )
        assert result.exit_code == 0, result.output
        status = json.loads(result.output)
        assert status["auth_type"] == "oauth_client_credentials"
        assert status["token_cached"] is True
        assert status["expired"] is True
        assert status["has_refresh_token"] is True

    def test_refresh_then_logout(self, invoke, instance: FakeInstance) -> None:
        oauth = ["--instance", INSTANCE, "--client-id", "cid", "--client-secret", "sec"]
        key = storage_key("oauth_cc", INSTANCE, "cid")

        result = invoke(*oauth, "auth", "refresh")
        assert result.exit_code == 0, result.output
        assert "Token refreshed" in result.output
        assert [r.url.path for r in instance.requests] == ["/oauth_token.do"]
        assert FileTokenStore().load(key) is not None

        result = invoke(*oauth, "auth", "logout")
        assert result.exit_code == 0, result.output
        assert FileTokenStore().load(key) is None

    def test_refresh_static_credentials(self, invoke, instance: FakeInstance) -> None:
        result = invoke(*BASIC, "auth", "refresh")
        assert result.exit_code == 0
        assert "nothing to refresh" in result.output
        assert instance.requests == []


class TestConfigCommands:
    def test_set_and_show(self, invoke) -> None:
        result = invoke("config", "set", "instance_url", INSTANCE)
        assert result.exit_code == 0, result.output
        assert load_global_config().instance_url == INSTANCE

        result = invoke("--json", "-q", "config", "show")
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["instance_url"] == INSTANCE

    def test_set_unknown_key(self, invoke) -> None:
        result = invoke("config", "set", "colour", "blue")
        assert result.exit_code == 1
        assert "Unknown config key" in result.output

    def test_configured_instance_is_used(self, invoke, instance: FakeInstance) -> None:
        invoke("config", "set", "instance_url", INSTANCE)
        result = invoke("--username", "admin", "--password", "pw", "-q", "table", "get", "incident", "abc")
        assert result.exit_code == 0, result.output
        assert str(instance.requests[0].url) == f"{INSTANCE}/api/now/table/incident/abc"

    def test_reset(self, invoke) -> None:
        invoke("config", "set", "timeout", "5")
        result = invoke("config", "reset", "--force")
        assert result.exit_code == 0
        assert load_global_config().timeout == 30.0
