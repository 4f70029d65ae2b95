"""
Ledger Storage Backend Module

Provides the abstract ledger store and implementations for in-memory
(testing), SQLite (local persistence) and Redis (remote store). A ledger is a
flat mapping from account id to an integer balance; a missing account reads
as zero.

Every backend offers an optimistic compare-and-set update: atomic_update
reads the balance, asks the caller's update function what to do with it and
writes the result only if nobody else wrote in between, retrying on
collision.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Tuple, Union
import sqlite3
import threading

import redis

from .errors import StoreError, TransactionContentionError
from .logging_config import get_logger


DEFAULT_MAX_RETRIES = 25

logger = get_logger("coinledger.storage")


@dataclass(frozen=True)
class Commit:
    """Update decision: write this value"""
    value: int


@dataclass(frozen=True)
class Abort:
    """Update decision: leave the balance untouched"""
    reason: str = ""


UpdateDecision = Union[Commit, Abort]
UpdateFunction = Callable[[int], UpdateDecision]


@dataclass(frozen=True)
class UpdateResult:
    """Outcome of an atomic update"""
    committed: bool
    final_value: int  # value written, or the value observed when aborting
    attempts: int = 1


class LedgerStore(ABC):
    """Abstract interface for ledger backends"""

    def __init__(self, max_retries: int = DEFAULT_MAX_RETRIES):
        self.max_retries = max_retries

    @abstractmethod
    def read(self, account_id: str) -> int:
        """Return the current balance, 0 for an unknown account"""
        pass

    @abstractmethod
    def write(self, account_id: str, balance: int) -> None:
        """Unconditionally overwrite the balance"""
        pass

    @abstractmethod
    def atomic_update(self, account_id: str, update_fn: UpdateFunction) -> UpdateResult:
        """
        Apply update_fn to the balance without losing concurrent updates.

        Args:
            account_id: Account to update
            update_fn: Receives the current balance, returns Commit or Abort

        Returns:
            UpdateResult; committed is False when update_fn aborted

        Raises:
            TransactionContentionError: If every attempt collided with another writer
            StoreError: If the backend failed
        """
        pass

    def close(self) -> None:
        """Release backend resources (default no-op)"""
        pass


def _check_decision(decision: object) -> None:
    if not isinstance(decision, (Commit, Abort)):
        raise TypeError(f"update function must return Commit or Abort, got {decision!r}")


class VersionedLedgerStore(LedgerStore):
    """Store whose records carry a version token checked on every update"""

    @abstractmethod
    def _read_versioned(self, account_id: str) -> Tuple[int, object]:
        """Return (balance, token) where token identifies the observed state"""
        pass

    @abstractmethod
    def _compare_and_set(self, account_id: str, token: object, balance: int) -> bool:
        """Write balance only if the state still matches token"""
        pass

    def atomic_update(self, account_id: str, update_fn: UpdateFunction) -> UpdateResult:
        for attempt in range(1, self.max_retries + 1):
            current, token = self._read_versioned(account_id)
            decision = update_fn(current)
            _check_decision(decision)

            if isinstance(decision, Abort):
                return UpdateResult(committed=False, final_value=current, attempts=attempt)

            if self._compare_and_set(account_id, token, decision.value):
                return UpdateResult(committed=True, final_value=decision.value, attempts=attempt)

            logger.debug(f"Concurrent write on {account_id}, retrying (attempt {attempt})")

        raise TransactionContentionError(account_id, self.max_retries)


class InMemoryLedgerStore(VersionedLedgerStore):
    """In-memory ledger for testing and single-process deployments"""

    def __init__(self, max_retries: int = DEFAULT_MAX_RETRIES):
        super().__init__(max_retries)
        self._balances: Dict[str, int] = {}
        self._versions: Dict[str, int] = {}
        self._lock = threading.Lock()

    def read(self, account_id: str) -> int:
        with self._lock:
            return self._balances.get(account_id, 0)

    def write(self, account_id: str, balance: int) -> None:
        with self._lock:
            self._balances[account_id] = balance
            self._versions[account_id] = self._versions.get(account_id, 0) + 1

    def _read_versioned(self, account_id: str) -> Tuple[int, object]:
        # The lock is released before update_fn runs so other writers can interleave
        with self._lock:
            return self._balances.get(account_id, 0), self._versions.get(account_id, 0)

    def _compare_and_set(self, account_id: str, token: object, balance: int) -> bool:
        with self._lock:
            if self._versions.get(account_id, 0) != token:
                return False
            self._balances[account_id] = balance
            self._versions[account_id] = token + 1
            return True

    def snapshot(self) -> Dict[str, int]:
        """Copy of every stored balance, for debugging/inspection"""
        with self._lock:
            return dict(self._balances)


class SQLiteLedgerStore(VersionedLedgerStore):
    """SQLite ledger for local persistence"""

    def __init__(self, db_path: str = ":memory:", max_retries: int = DEFAULT_MAX_RETRIES):
        super().__init__(max_retries)
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        try:
            self._connection = sqlite3.connect(self.db_path, check_same_thread=False)
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
            self._connection.execute("""
                CREATE TABLE IF NOT EXISTS balances (
                    account_id TEXT PRIMARY KEY,
                    balance INTEGER NOT NULL,
                    version INTEGER NOT NULL
                )
            """)
            self._connection.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open ledger database {self.db_path}: {e}") from e

    def _conn(self) -> sqlite3.Connection:
        # Callers hold self._lock
        if self._connection is None:
            raise StoreError("Ledger database is closed")
        return self._connection

    def read(self, account_id: str) -> int:
        return self._read_versioned(account_id)[0]

    def write(self, account_id: str, balance: int) -> None:
        with self._lock:
            try:
                self._conn().execute("""
                    INSERT INTO balances (account_id, balance, version) VALUES (?, ?, 1)
                    ON CONFLICT(account_id) DO UPDATE SET
                        balance = excluded.balance,
                        version = balances.version + 1
                """, (account_id, balance))
                self._connection.commit()
            except sqlite3.Error as e:
                self._connection.rollback()
                raise StoreError(f"Failed to write balance for {account_id}: {e}") from e

    def _read_versioned(self, account_id: str) -> Tuple[int, object]:
        with self._lock:
            try:
                row = self._conn().execute(
                    "SELECT balance, version FROM balances WHERE account_id = ?",
                    (account_id,)
                ).fetchone()
            except sqlite3.Error as e:
                raise StoreError(f"Failed to read balance for {account_id}: {e}") from e
        if row is None:
            return 0, None
        return row[0], row[1]

    def _compare_and_set(self, account_id: str, token: object, balance: int) -> bool:
        with self._lock:
            try:
                if token is None:
                    cursor = self._conn().execute(
                        "INSERT OR IGNORE INTO balances (account_id, balance, version) VALUES (?, ?, 1)",
                        (account_id, balance)
                    )
                else:
                    cursor = self._conn().execute(
                        "UPDATE balances SET balance = ?, version = version + 1 "
                        "WHERE account_id = ? AND version = ?",
                        (balance, account_id, token)
                    )
                self._connection.commit()
                return cursor.rowcount == 1
            except sqlite3.Error as e:
                self._connection.rollback()
                raise StoreError(f"Failed to update balance for {account_id}: {e}") from e

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class RedisLedgerStore(LedgerStore):
    """Redis ledger; compare-and-set is WATCH/MULTI/EXEC"""

    def __init__(self, client: redis.Redis, key_prefix: str = "users:",
                 max_retries: int = DEFAULT_MAX_RETRIES):
        super().__init__(max_retries)
        self.client = client
        self.key_prefix = key_prefix

    def _key(self, account_id: str) -> str:
        return f"{self.key_prefix}{account_id}:coins"

    def _parse(self, key: str, raw) -> int:
        if raw is None:
            return 0
        try:
            return int(raw)
        except (TypeError, ValueError) as e:
            raise StoreError(f"Non-integer balance stored at {key}: {raw!r}") from e

    def read(self, account_id: str) -> int:
        key = self._key(account_id)
        try:
            raw = self.client.get(key)
        except redis.RedisError as e:
            raise StoreError(f"Failed to read balance for {account_id}: {e}") from e
        return self._parse(key, raw)

    def write(self, account_id: str, balance: int) -> None:
        try:
            self.client.set(self._key(account_id), balance)
        except redis.RedisError as e:
            raise StoreError(f"Failed to write balance for {account_id}: {e}") from e

    def atomic_update(self, account_id: str, update_fn: UpdateFunction) -> UpdateResult:
        key = self._key(account_id)
        try:
            with self.client.pipeline() as pipe:
                for attempt in range(1, self.max_retries + 1):
                    try:
                        pipe.watch(key)
                        raw = pipe.get(key)
                        current = self._parse(key, raw)
                        decision = update_fn(current)
                        _check_decision(decision)

                        if isinstance(decision, Abort):
                            pipe.unwatch()
                            return UpdateResult(committed=False, final_value=current, attempts=attempt)

                        pipe.multi()
                        pipe.set(key, decision.value)
                        pipe.execute()
                        return UpdateResult(committed=True, final_value=decision.value, attempts=attempt)
                    except redis.WatchError:
                        logger.debug(f"Concurrent write on {account_id}, retrying (attempt {attempt})")
                        continue
        except redis.RedisError as e:
            raise StoreError(f"Failed to update balance for {account_id}: {e}") from e

        raise TransactionContentionError(account_id, self.max_retries)

    def close(self) -> None:
        try:
            self.client.close()
        except redis.RedisError as e:
            logger.warning(f"Error closing Redis connection: {e}")


def create_ledger_store(config) -> LedgerStore:
    """
    Build the ledger store selected by configuration.

    Args:
        config: LedgerConfig instance

    Returns:
        LedgerStore for config.ledger_backend
    """
    backend = config.ledger_backend.lower()

    if backend == "memory":
        return InMemoryLedgerStore(max_retries=config.store_max_retries)

    if backend == "sqlite":
        return SQLiteLedgerStore(config.sqlite_path, max_retries=config.store_max_retries)

    if backend == "redis":
        client = redis.Redis(
            host=config.redis_host,
            port=config.redis_port,
            db=config.redis_db,
            password=config.redis_password,
            decode_responses=True,
            socket_connect_timeout=config.redis_socket_timeout,
            socket_timeout=config.redis_socket_timeout
        )
        return RedisLedgerStore(
            client,
            key_prefix=config.redis_key_prefix,
            max_retries=config.store_max_retries
        )

    raise ValueError(f"Unknown ledger backend: {config.ledger_backend}")
