"""Tests for the operator CLI."""

from unittest.mock import MagicMock, patch

import httpx
from click.testing import CliRunner

from cli.fanout_cli import cli


def _response(status: int, payload: dict) -> httpx.Response:
    return httpx.Response(status, json=payload, request=httpx.Request("GET", "http://api.test"))


class TestEndpointCommands:
    def test_list_sends_bearer_token(self):
        payload = {"endpoints": [
            {"id": 1, "url": "https://a.test", "is_primary": True, "is_active": True},
            {"id": 2, "url": "https://b.test", "is_primary": False, "is_active": False},
        ]}
        with patch("cli.fanout_cli.httpx.request", MagicMock(return_value=_response(200, payload))) as req:
            result = CliRunner().invoke(
                cli, ["--base-url", "http://api.test", "--token", "tok", "endpoints", "list"]
            )

        assert result.exit_code == 0, result.output
        assert "#1  https://a.test  [primary]" in result.output
        assert "#2  https://b.test  [inactive]" in result.output
        args, kwargs = req.call_args
        assert args == ("GET", "http://api.test/config/endpoints")
        assert kwargs["headers"] == {"Authorization": "Bearer tok"}

    def test_add_with_headers(self):
        with patch("cli.fanout_cli.httpx.request", MagicMock(return_value=_response(201, {"endpoint": {"id": 7}}))) as req:
            result = CliRunner().invoke(cli, [
                "endpoints", "add", "https://a.test", "--primary", "--header", "X-Token: abc",
            ])

        assert result.exit_code == 0, result.output
        assert "ID=7" in result.output
        assert req.call_args.kwargs["json"] == {
            "url": "https://a.test", "is_primary": True, "headers": {"X-Token": "abc"},
        }

    def test_api_error_surfaces_detail(self):
        with patch("cli.fanout_cli.httpx.request", MagicMock(return_value=_response(404, {"detail": "Endpoint 9 not found"}))):
            result = CliRunner().invoke(cli, ["endpoints", "remove", "9"])

        assert result.exit_code != 0
        assert "Endpoint 9 not found" in result.output

    def test_update_requires_a_change(self):
        result = CliRunner().invoke(cli, ["endpoints", "update", "1"])
        assert result.exit_code != 0
        assert "Nothing to update" in result.output


class TestReplayCommands:
    def test_replay_range(self):
        payload = {
            "message": "Replayed 2 webhooks",
            "results": [
                {"original_webhook_id": "w1", "new_webhook_id": "n1", "status": "completed", "error": None},
                {"original_webhook_id": "w2", "new_webhook_id": None, "status": "error", "error": "bad headers"},
            ],
        }
        with patch("cli.fanout_cli.httpx.request", MagicMock(return_value=_response(200, payload))) as req:
            result = CliRunner().invoke(cli, [
                "replay", "range", "--start", "2026-01-01T00:00:00Z", "--end", "2026-01-02T00:00:00Z",
                "--endpoint-id", "3",
            ])

        assert result.exit_code == 0, result.output
        assert "w1 -> n1  completed" in result.output
        assert "w2 -> -  error (bad headers)" in result.output
        assert req.call_args.kwargs["json"] == {
            "startDate": "2026-01-01T00:00:00Z", "endDate": "2026-01-02T00:00:00Z", "endpointId": 3,
        }

    def test_replay_one(self):
        payload = {"result": {"new_webhook_id": "n1", "status": "completed"}}
        with patch("cli.fanout_cli.httpx.request", MagicMock(return_value=_response(200, payload))) as req:
            result = CliRunner().invoke(cli, ["replay", "one", "w1"])

        assert result.exit_code == 0, result.output
        assert "Replayed w1 as n1: completed" in result.output
        assert req.call_args.args == ("POST", "http://localhost:8000/replay/w1")
