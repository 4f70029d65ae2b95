"""
Access Control Module

Capabilities a chat principal can hold and the stateless guard consulted
before any administrative ledger operation.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet

from .errors import AuthorizationError
from .logging_config import get_logger, log_action


# Discord permission bit for "Administrator"
ADMINISTRATOR_PERMISSION_BIT = 1 << 3


class Capability(Enum):
    """Administrative capabilities"""
    ADMINISTRATOR = "administrator"

    @classmethod
    def from_permission_bits(cls, bits: int) -> FrozenSet["Capability"]:
        """Map a platform permission bitfield to capabilities"""
        capabilities = set()
        if bits & ADMINISTRATOR_PERMISSION_BIT:
            capabilities.add(cls.ADMINISTRATOR)
        return frozenset(capabilities)


@dataclass(frozen=True)
class Principal:
    """The user invoking a command"""
    id: str
    username: str
    capabilities: FrozenSet[Capability] = field(default_factory=frozenset)
    is_bot: bool = False

    def has_capability(self, capability: Capability) -> bool:
        """Check if principal holds a specific capability"""
        return capability in self.capabilities


class AuthorizationGuard:
    """Stateless capability check; never touches the ledger"""

    def __init__(self):
        self.logger = get_logger("coinledger.rbac")

    def has_capability(self, principal: Principal, capability: Capability) -> bool:
        return principal.has_capability(capability)

    def require(self, principal: Principal, capability: Capability) -> None:
        """
        Reject the call unless principal holds capability.

        Raises:
            AuthorizationError: If the capability is missing
        """
        if not self.has_capability(principal, capability):
            log_action(
                self.logger, "warning", "Capability check failed",
                user_id=principal.id, action="authorize",
                extra={"capability": capability.value}
            )
            raise AuthorizationError(
                f"{principal.username} lacks the {capability.value} capability"
            )
