"""
FastAPI Interaction Endpoint Module

Receives Discord slash-command interactions over HTTP, verifies their
Ed25519 signatures, routes them to the ledger and returns the reply.
Runs on port 8090 by default.
"""

import json
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import httpx
import uvicorn
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey
from pydantic import BaseModel, ValidationError as PydanticValidationError

from . import __version__
from .commands import COMMAND_DEFINITIONS, OPTION_USER, Account, CommandRequest, CommandResponse
from .config import LedgerConfig, get_config
from .discord_client import DiscordAPIError, DiscordClient
from .logging_config import get_logger, setup_logging
from .rbac import Capability, Principal
from .system import LedgerSystem


# Interaction and response types
INTERACTION_PING = 1
INTERACTION_APPLICATION_COMMAND = 2
RESPONSE_PONG = 1
RESPONSE_CHANNEL_MESSAGE = 4
EPHEMERAL_FLAG = 1 << 6

logger = get_logger("coinledger.api")


# Pydantic models for the interaction payload
class InteractionUser(BaseModel):
    id: str
    username: str = ""
    bot: bool = False


class InteractionMember(BaseModel):
    user: Optional[InteractionUser] = None
    permissions: str = "0"


class CommandOption(BaseModel):
    name: str
    type: int
    value: Optional[Any] = None


class ResolvedData(BaseModel):
    users: Dict[str, InteractionUser] = {}


class CommandData(BaseModel):
    name: str
    options: List[CommandOption] = []
    resolved: Optional[ResolvedData] = None


class Interaction(BaseModel):
    type: int
    data: Optional[CommandData] = None
    member: Optional[InteractionMember] = None
    user: Optional[InteractionUser] = None

    def caller(self) -> Principal:
        """The invoking user; guild invocations carry their permission bits"""
        if self.member and self.member.user:
            user = self.member.user
            try:
                bits = int(self.member.permissions or 0)
            except ValueError:
                raise HTTPException(status.HTTP_400_BAD_REQUEST, "Malformed member permissions")
            capabilities = Capability.from_permission_bits(bits)
        elif self.user:
            user = self.user
            capabilities = frozenset()
        else:
            raise HTTPException(status.HTTP_400_BAD_REQUEST, "Interaction has no user")
        return Principal(user.id, user.username, capabilities, is_bot=user.bot)

    def to_command_request(self) -> CommandRequest:
        if self.data is None:
            raise HTTPException(status.HTTP_400_BAD_REQUEST, "Command interaction without data")

        resolved_users = self.data.resolved.users if self.data.resolved else {}
        options: Dict[str, Any] = {}
        for option in self.data.options:
            if option.type == OPTION_USER:
                user_id = str(option.value)
                user = resolved_users.get(user_id)
                options[option.name] = Account(
                    id=user_id,
                    username=user.username if user else user_id,
                    is_bot=user.bot if user else False
                )
            else:
                options[option.name] = option.value

        return CommandRequest(name=self.data.name, caller=self.caller(), options=options)


def render_response(response: CommandResponse) -> Dict[str, Any]:
    data: Dict[str, Any] = {"content": response.content}
    if response.ephemeral:
        data["flags"] = EPHEMERAL_FLAG
    return {"type": RESPONSE_CHANNEL_MESSAGE, "data": data}


def load_verify_key(public_key_hex: str) -> Optional[VerifyKey]:
    if not public_key_hex:
        return None
    try:
        return VerifyKey(bytes.fromhex(public_key_hex))
    except (ValueError, TypeError) as e:
        raise ValueError(f"Invalid discord_public_key (expected 64 hex characters): {e}") from e


def verify_signature(verify_key: Optional[VerifyKey], signature: Optional[str],
                     timestamp: Optional[str], body: bytes) -> bool:
    """Check Discord's Ed25519 signature over timestamp + body"""
    if verify_key is None or not signature or not timestamp:
        return False
    try:
        verify_key.verify(timestamp.encode() + body, bytes.fromhex(signature))
        return True
    except (BadSignatureError, ValueError):
        return False


def register_commands(config: LedgerConfig, client: Optional[DiscordClient] = None) -> None:
    """Register guild commands; failures are logged, never fatal"""
    for name, state in config.describe_credentials().items():
        logger.info(f"{name}: {state}")

    if not config.register_commands_on_startup:
        return
    if not config.can_register_commands:
        logger.warning("Discord credentials incomplete, skipping command registration")
        return

    owns_client = client is None
    client = client or DiscordClient(
        token=config.discord_bot_token,
        client_id=config.discord_client_id,
        base_url=config.discord_api_base,
        timeout=config.discord_timeout
    )
    try:
        client.register_guild_commands(config.discord_guild_id, COMMAND_DEFINITIONS)
    except (DiscordAPIError, httpx.HTTPError) as e:
        logger.error(f"Error registering guild commands: {e}")
    finally:
        if owns_client:
            client.close()


def create_app(system: Optional[LedgerSystem] = None,
               discord_client: Optional[DiscordClient] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    system = system or LedgerSystem()
    config = system.config
    verify_key = load_verify_key(config.discord_public_key)
    if verify_key is None:
        logger.warning("No Discord public key configured; every interaction will be rejected")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await run_in_threadpool(register_commands, config, discord_client)
        yield
        system.close()

    app = FastAPI(
        title="Coin Ledger",
        description="Virtual currency ledger driven by Discord slash commands",
        version=__version__,
        lifespan=lifespan
    )
    app.state.system = system

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "coin_ledger",
            "version": __version__,
            "ledger_backend": config.ledger_backend
        }

    @app.post("/interactions")
    async def interactions(request: Request):
        """Discord interaction webhook"""
        body = await request.body()
        if not verify_signature(
            verify_key,
            request.headers.get("X-Signature-Ed25519"),
            request.headers.get("X-Signature-Timestamp"),
            body
        ):
            raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid request signature")

        try:
            interaction = Interaction.model_validate(json.loads(body))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            raise HTTPException(status.HTTP_400_BAD_REQUEST, f"Malformed interaction: {e}")

        if interaction.type == INTERACTION_PING:
            return {"type": RESPONSE_PONG}

        if interaction.type != INTERACTION_APPLICATION_COMMAND:
            raise HTTPException(status.HTTP_400_BAD_REQUEST, f"Unsupported interaction type {interaction.type}")

        command = interaction.to_command_request()
        response = await run_in_threadpool(system.router.dispatch, command)
        return render_response(response)

    return app


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    setup_logging(config.log_level, config.log_format)
    uvicorn.run(
        "coin_ledger.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
