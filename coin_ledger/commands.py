"""
Command Routing Module

Maps chat commands to ledger operations: validates options, checks the
administrative capability where needed, runs the operation and renders the
reply. Holds no ledger state.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from .errors import (
    AuthorizationError, InsufficientFundsError, StoreError, ValidationError
)
from .logging_config import get_logger, log_action
from .rbac import AuthorizationGuard, Capability, Principal
from .transactions import TransactionEngine, validate_amount


# Application command option types
OPTION_USER = 6
OPTION_INTEGER = 4

ADMINISTRATOR_PERMISSIONS = "8"


@dataclass(frozen=True)
class Account:
    """An account reference resolved by the chat platform"""
    id: str
    username: str
    is_bot: bool = False


@dataclass
class CommandRequest:
    """One parsed command invocation"""
    name: str
    caller: Principal
    options: Dict[str, Any] = field(default_factory=dict)

    def account_option(self, name: str, required: bool = True) -> Optional[Account]:
        value = self.options.get(name)
        if value is None:
            if required:
                raise ValidationError(ValidationError.MISSING_OPTION, f"Missing option: {name}")
            return None
        if not isinstance(value, Account):
            raise ValidationError(ValidationError.MISSING_OPTION, f"Option {name} is not a user")
        return value

    def integer_option(self, name: str) -> Any:
        if name not in self.options:
            raise ValidationError(ValidationError.MISSING_OPTION, f"Missing option: {name}")
        return self.options[name]


@dataclass(frozen=True)
class CommandResponse:
    """Reply to send back; ephemeral replies are only shown to the caller"""
    content: str
    ephemeral: bool = False


# Slash command registration payload
COMMAND_DEFINITIONS = [
    {
        "name": "ping",
        "description": "Replies with Pong!",
    },
    {
        "name": "balance",
        "description": "Check your or another user's coin balance.",
        "options": [
            {"name": "user", "type": OPTION_USER,
             "description": "The user whose balance you want to see.", "required": False},
        ],
    },
    {
        "name": "pay",
        "description": "Transfer coins to another user.",
        "options": [
            {"name": "user", "type": OPTION_USER,
             "description": "The user you want to pay.", "required": True},
            {"name": "amount", "type": OPTION_INTEGER,
             "description": "The amount of coins to pay.", "required": True},
        ],
    },
    {
        "name": "add-money",
        "description": "Add coins to a user. (Admin only)",
        "options": [
            {"name": "user", "type": OPTION_USER,
             "description": "The user to add coins to.", "required": True},
            {"name": "amount", "type": OPTION_INTEGER,
             "description": "The amount of coins to add.", "required": True},
        ],
        "default_member_permissions": ADMINISTRATOR_PERMISSIONS,
    },
    {
        "name": "remove-money",
        "description": "Remove coins from a user. (Admin only)",
        "options": [
            {"name": "user", "type": OPTION_USER,
             "description": "The user to remove coins from.", "required": True},
            {"name": "amount", "type": OPTION_INTEGER,
             "description": "The amount of coins to remove.", "required": True},
        ],
        "default_member_permissions": ADMINISTRATOR_PERMISSIONS,
    },
]


class CommandRouter:
    """Dispatch table from command name to handler"""

    def __init__(self, engine: TransactionEngine, guard: AuthorizationGuard):
        self.engine = engine
        self.guard = guard
        self.logger = get_logger("coinledger.commands")
        self._handlers: Dict[str, Callable[[CommandRequest], CommandResponse]] = {
            "ping": self._ping,
            "balance": self._balance,
            "pay": self._pay,
            "add-money": self._add_money,
            "remove-money": self._remove_money,
        }

    @property
    def command_names(self):
        return sorted(self._handlers)

    def dispatch(self, request: CommandRequest) -> CommandResponse:
        """Run a command and always produce a reply"""
        handler = self._handlers.get(request.name)
        if handler is None:
            return CommandResponse(f"Unknown command: {request.name}", ephemeral=True)

        log_action(
            self.logger, "debug", f"Dispatching command {request.name}",
            user_id=request.caller.id, action=request.name
        )
        return handler(request)

    def _ping(self, request: CommandRequest) -> CommandResponse:
        return CommandResponse("Pong! 🏓", ephemeral=True)

    def _balance(self, request: CommandRequest) -> CommandResponse:
        target = request.account_option("user", required=False)
        if target is None:
            target = Account(request.caller.id, request.caller.username, request.caller.is_bot)

        try:
            balance = self.engine.balance(target.id)
        except StoreError:
            self.logger.exception("Balance lookup failed")
            return CommandResponse("An error occurred while fetching the balance.", ephemeral=True)

        return CommandResponse(
            f"💰 The balance of **{target.username}** is **{balance:,}** coins."
        )

    def _pay(self, request: CommandRequest) -> CommandResponse:
        try:
            target = request.account_option("user")
            amount = validate_amount(request.integer_option("amount"))
            if target.id == request.caller.id:
                raise ValidationError(ValidationError.SELF_TRANSFER)
            if target.is_bot:
                raise ValidationError(ValidationError.BOT_TARGET)
        except ValidationError as e:
            return CommandResponse(self._pay_validation_message(e), ephemeral=True)

        try:
            self.engine.transfer(request.caller.id, target.id, amount, target_is_bot=target.is_bot)
        except InsufficientFundsError:
            return CommandResponse(
                "You don't have enough coins to complete this transaction.", ephemeral=True
            )
        except ValidationError as e:
            return CommandResponse(self._pay_validation_message(e), ephemeral=True)
        except StoreError:
            self.logger.exception("Payment transaction failed")
            return CommandResponse("An error occurred while processing the payment.", ephemeral=True)

        return CommandResponse(
            f"💸 Success! You have sent **{amount:,}** coins to **{target.username}**."
        )

    @staticmethod
    def _pay_validation_message(error: ValidationError) -> str:
        if error.reason == ValidationError.SELF_TRANSFER:
            return "You cannot pay yourself."
        if error.reason == ValidationError.BOT_TARGET:
            return "You cannot pay a bot."
        if error.reason == ValidationError.MISSING_OPTION:
            return "Please choose a user and an amount."
        return "Please provide a valid amount greater than zero."

    def _add_money(self, request: CommandRequest) -> CommandResponse:
        return self._adjust(request, sign=1)

    def _remove_money(self, request: CommandRequest) -> CommandResponse:
        return self._adjust(request, sign=-1)

    def _adjust(self, request: CommandRequest, sign: int) -> CommandResponse:
        try:
            self.guard.require(request.caller, Capability.ADMINISTRATOR)
        except AuthorizationError:
            return CommandResponse("❌ You do not have permission to use this command.", ephemeral=True)

        try:
            target = request.account_option("user")
            amount = validate_amount(request.integer_option("amount"))
        except ValidationError as e:
            if e.reason == ValidationError.MISSING_OPTION:
                return CommandResponse("Please choose a user and an amount.", ephemeral=True)
            return CommandResponse("Please provide a valid amount.", ephemeral=True)
        if target.is_bot:
            return CommandResponse("You cannot modify a bot's balance.", ephemeral=True)

        try:
            result = self.engine.adjust(target.id, sign * amount)
        except StoreError:
            self.logger.exception("Admin money command failed")
            return CommandResponse("An error occurred while updating the balance.", ephemeral=True)

        if not result.committed:
            return CommandResponse(
                f"The user only has {result.final_value} coins. "
                "You cannot remove more than what they have.",
                ephemeral=True
            )

        action_text = "Added" if sign > 0 else "Removed"
        log_action(
            self.logger, "info", f"{action_text} {amount} coins",
            user_id=request.caller.id, action=request.name, resource=f"account:{target.id}",
            extra={"new_balance": result.final_value}
        )
        return CommandResponse(
            f"✅ {action_text} **{amount:,}** coins to/from **{target.username}**. "
            f"New balance: **{result.final_value:,}**."
        )
