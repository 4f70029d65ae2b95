"""
Ledger system wiring: store, engine, guard and router built from config
"""

from typing import Optional

from .commands import CommandRouter
from .config import LedgerConfig, get_config
from .rbac import AuthorizationGuard
from .storage import LedgerStore, create_ledger_store
from .transactions import TransactionEngine, TransferStrategy


class LedgerSystem:
    """Ledger components initialized against one store"""

    def __init__(self, config: Optional[LedgerConfig] = None,
                 store: Optional[LedgerStore] = None):
        self.config = config or get_config()
        self.store = store or create_ledger_store(self.config)
        self.engine = TransactionEngine(
            self.store,
            transfer_strategy=TransferStrategy(self.config.transfer_strategy.lower())
        )
        self.guard = AuthorizationGuard()
        self.router = CommandRouter(self.engine, self.guard)

    def close(self) -> None:
        self.store.close()
