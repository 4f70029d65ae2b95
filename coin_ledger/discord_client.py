"""
Discord REST Client Module

Registers the bot's slash commands for a guild through the Discord HTTP API.
"""

import httpx
import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger("coinledger.discord")


class DiscordAPIError(Exception):
    """Discord rejected a request"""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Discord returned {status_code}: {body}")


class DiscordClient:
    """Minimal Discord REST client"""

    def __init__(
        self,
        token: str,
        client_id: str,
        base_url: str = "https://discord.com/api/v10",
        timeout: float = 10.0,
        http_client: Optional[httpx.Client] = None
    ):
        self.client_id = client_id
        self.base_url = base_url.rstrip("/")
        self._client = http_client or httpx.Client(timeout=timeout)
        self._headers = {"Authorization": f"Bot {token}"}

    def register_guild_commands(self, guild_id: str, commands: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Replace the guild's application commands with commands

        Args:
            guild_id: Guild the commands are registered in
            commands: Command definitions

        Returns:
            Commands as stored by Discord

        Raises:
            DiscordAPIError: If Discord rejects the request
            httpx.HTTPError: If Discord cannot be reached
        """
        url = f"{self.base_url}/applications/{self.client_id}/guilds/{guild_id}/commands"
        logger.info(f"Started refreshing {len(commands)} application (/) commands for guild {guild_id}")

        response = self._client.put(url, json=commands, headers=self._headers)
        if response.status_code not in (200, 201):
            raise DiscordAPIError(response.status_code, response.text)

        logger.info("Successfully reloaded application (/) commands for the guild")
        return response.json()

    def close(self):
        """Close the HTTP client"""
        self._client.close()
