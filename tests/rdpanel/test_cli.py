"""Tests for rdpanel/cli/main.py."""

import httpx
import pytest
from typer.testing import CliRunner

from conftest import VALID_API_KEY, FakeProvider, no_sleep
from rdpanel.cli import main as cli
from rdpanel.common.client import HostingClient
from rdpanel.common.crypto import validate_encryption_key

runner = CliRunner()

ORDER_ARGS = ["order", "--api-key", VALID_API_KEY, "--distro", "1", "--region", "1", "--plan", "2"]


@pytest.fixture
def fake_client(monkeypatch, provider: FakeProvider) -> FakeProvider:
    """Route CLI clients to the fake provider."""

    def factory(api_key, settings=None, **kwargs):
        return HostingClient(
            api_key, {"max_retries": 0}, transport=provider.transport, sleep=no_sleep
        )

    monkeypatch.setattr(cli, "client_from_settings", factory)
    return provider


class TestGenkey:
    """Tests for the genkey command."""

    def test_prints_valid_key(self):
        """The printed key passes validation."""
        result = runner.invoke(cli.app, ["genkey"])

        assert result.exit_code == 0
        assert validate_encryption_key(result.output.strip())


class TestServers:
    """Tests for the servers command."""

    def test_lists_servers(self, fake_client, server_payloads):
        """Servers are rendered in a table."""
        fake_client.add("GET", "/servers", server_payloads)

        result = runner.invoke(cli.app, ["servers", "--api-key", VALID_API_KEY])

        assert result.exit_code == 0
        assert "srv-1" in result.output
        assert "debian-12" in result.output

    def test_api_key_from_env(self, fake_client, monkeypatch):
        """RDPANEL_API_KEY is used when --api-key is absent."""
        monkeypatch.setenv("RDPANEL_API_KEY", VALID_API_KEY)
        fake_client.add("GET", "/servers", [])

        result = runner.invoke(cli.app, ["servers"])

        assert result.exit_code == 0
        (call,) = fake_client.calls
        assert call.headers["Authorization"] == VALID_API_KEY

    def test_unauthorized_exits_1(self, fake_client):
        """A rejected key exits with code 1 and a hint."""
        fake_client.add("GET", "/servers", httpx.Response(401))

        result = runner.invoke(cli.app, ["servers", "--api-key", VALID_API_KEY])

        assert result.exit_code == 1
        assert "RDPANEL_API_KEY" in result.output

    def test_rate_limited_exits_2(self, fake_client):
        """Provider throttling exits with code 2."""
        fake_client.add("GET", "/servers", httpx.Response(429, json={"message": "slow down"}))

        result = runner.invoke(cli.app, ["servers", "--api-key", VALID_API_KEY])

        assert result.exit_code == 2
        assert "slow down" in result.output


class TestPower:
    """Tests for the power command."""

    def test_sends_action(self, fake_client):
        """The action is posted to the provider."""
        fake_client.add("POST", "/servers/srv-1/power/start", {"status": True})

        result = runner.invoke(cli.app, ["power", "srv-1", "start", "--api-key", VALID_API_KEY])

        assert result.exit_code == 0
        assert "start sent to srv-1" in result.output

    def test_invalid_action(self, fake_client):
        """Unknown actions fail without a request."""
        result = runner.invoke(cli.app, ["power", "srv-1", "reboot", "--api-key", VALID_API_KEY])

        assert result.exit_code == 1
        assert fake_client.calls == []


class TestOrder:
    """Tests for the order command."""

    def test_order_with_yes(self, fake_client):
        """--yes skips the prompt and prints the new server id."""
        fake_client.add("POST", "/order", {"success": True, "server_id": 9001})

        result = runner.invoke(cli.app, [*ORDER_ARGS, "-y"])

        assert result.exit_code == 0
        assert "9001" in result.output

    def test_declined_prompt(self, fake_client):
        """Answering no aborts before ordering."""
        result = runner.invoke(cli.app, ORDER_ARGS, input="n\n")

        assert result.exit_code == 1
        assert fake_client.calls == []
