"""
Tests for the Discord REST client and startup command registration
"""

import json
from unittest.mock import Mock

import httpx
import pytest

from coin_ledger.api import register_commands
from coin_ledger.commands import COMMAND_DEFINITIONS
from coin_ledger.config import LedgerConfig
from coin_ledger.discord_client import DiscordAPIError, DiscordClient


def make_client(handler):
    http_client = httpx.Client(transport=httpx.MockTransport(handler))
    return DiscordClient(
        token="bot-token",
        client_id="app-1",
        base_url="https://discord.test/api/v10/",
        http_client=http_client
    )


class TestDiscordClient:

    def test_register_guild_commands(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=[{"id": "1", "name": "ping"}])

        client = make_client(handler)
        result = client.register_guild_commands("guild-9", COMMAND_DEFINITIONS)

        assert result == [{"id": "1", "name": "ping"}]
        assert seen["method"] == "PUT"
        assert seen["url"] == "https://discord.test/api/v10/applications/app-1/guilds/guild-9/commands"
        assert seen["auth"] == "Bot bot-token"
        assert [c["name"] for c in seen["body"]] == [c["name"] for c in COMMAND_DEFINITIONS]

    def test_rejected_request_raises(self):
        client = make_client(lambda request: httpx.Response(401, text="401: Unauthorized"))

        with pytest.raises(DiscordAPIError) as exc_info:
            client.register_guild_commands("guild-9", COMMAND_DEFINITIONS)

        assert exc_info.value.status_code == 401
        assert "Unauthorized" in exc_info.value.body

    def test_network_error_propagates(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        client = make_client(handler)
        with pytest.raises(httpx.ConnectError):
            client.register_guild_commands("guild-9", [])


class TestRegisterCommands:

    def credentials(self, **overrides):
        values = dict(
            discord_bot_token="t", discord_client_id="c", discord_guild_id="g",
            register_commands_on_startup=True
        )
        values.update(overrides)
        return LedgerConfig(**values)

    def test_registers_all_commands(self):
        client = Mock(spec=DiscordClient)
        register_commands(self.credentials(), client)
        client.register_guild_commands.assert_called_once_with("g", COMMAND_DEFINITIONS)

    def test_skipped_without_credentials(self):
        client = Mock(spec=DiscordClient)
        register_commands(self.credentials(discord_bot_token=""), client)
        client.register_guild_commands.assert_not_called()

    def test_skipped_when_disabled(self):
        client = Mock(spec=DiscordClient)
        register_commands(self.credentials(register_commands_on_startup=False), client)
        client.register_guild_commands.assert_not_called()

    def test_registration_failure_is_not_fatal(self):
        client = Mock(spec=DiscordClient)
        client.register_guild_commands.side_effect = DiscordAPIError(500, "boom")

        register_commands(self.credentials(), client)

        client.register_guild_commands.assert_called_once()
        client.close.assert_not_called()
