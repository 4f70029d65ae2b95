"""
Transaction Processing Module

Peer-to-peer transfers and administrative balance adjustments on top of a
LedgerStore.

Adjustments go through the store's atomic_update and never lose a concurrent
update. Transfers, in their default SEQUENTIAL form, read the sender balance
and then issue two unconditional writes (debit, then credit). That sequence
has two known gaps:

* two transfers from the same sender can both pass the balance check and
  spend the same funds (the later debit overwrites the earlier one);
* a store failure between the debit and the credit loses the units.

The SAGA strategy closes both: each leg is an atomic_update and a failed
credit is compensated by re-crediting the sender.
"""

from dataclasses import dataclass
from enum import Enum

from .errors import InsufficientFundsError, StoreError, ValidationError
from .logging_config import get_logger, log_action
from .storage import Abort, Commit, LedgerStore, UpdateResult


class TransferStrategy(Enum):
    """How the two legs of a transfer are written"""
    SEQUENTIAL = "sequential"  # check, then two unconditional writes
    SAGA = "saga"              # atomic debit, atomic credit, compensate on failure


@dataclass(frozen=True)
class TransferResult:
    """Balances observed right after a transfer"""
    from_id: str
    to_id: str
    amount: int
    from_balance: int
    to_balance: int


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_amount(amount) -> int:
    """Amounts are positive integers"""
    if not _is_int(amount) or amount <= 0:
        raise ValidationError(ValidationError.INVALID_AMOUNT, f"Invalid amount: {amount!r}")
    return amount


class TransactionEngine:
    """
    Executes ledger operations against a store, enforcing the
    non-negative balance rule
    """

    def __init__(self, store: LedgerStore,
                 transfer_strategy: TransferStrategy = TransferStrategy.SEQUENTIAL):
        self.store = store
        self.transfer_strategy = transfer_strategy
        self.logger = get_logger("coinledger.transactions")

    def balance(self, account_id: str) -> int:
        """Current balance of an account (0 if never referenced)"""
        return self.store.read(account_id)

    def transfer(self, from_id: str, to_id: str, amount: int,
                 target_is_bot: bool = False) -> TransferResult:
        """
        Move amount units from one account to another.

        Args:
            from_id: Paying account
            to_id: Receiving account
            amount: Positive number of units
            target_is_bot: True when the receiver is not a real principal

        Returns:
            TransferResult with both balances after the transfer

        Raises:
            ValidationError: If amount, sender/receiver pair or target is invalid
            InsufficientFundsError: If the sender cannot cover amount
            StoreError: If the store fails mid-operation
        """
        validate_amount(amount)
        if from_id == to_id:
            raise ValidationError(ValidationError.SELF_TRANSFER, "Cannot transfer to the same account")
        if target_is_bot:
            raise ValidationError(ValidationError.BOT_TARGET, "Cannot transfer to a bot account")

        if self.transfer_strategy == TransferStrategy.SAGA:
            result = self._transfer_saga(from_id, to_id, amount)
        else:
            result = self._transfer_sequential(from_id, to_id, amount)

        log_action(
            self.logger, "info", "Transfer completed",
            user_id=from_id, action="transfer", resource=f"account:{to_id}",
            extra={
                "amount": amount,
                "strategy": self.transfer_strategy.value,
                "from_balance": result.from_balance,
                "to_balance": result.to_balance
            }
        )
        return result

    def _transfer_sequential(self, from_id: str, to_id: str, amount: int) -> TransferResult:
        from_balance = self.store.read(from_id)
        if from_balance < amount:
            raise InsufficientFundsError(from_id, from_balance, amount)

        new_from_balance = from_balance - amount
        self.store.write(from_id, new_from_balance)

        try:
            new_to_balance = self.store.read(to_id) + amount
            self.store.write(to_id, new_to_balance)
        except StoreError:
            # Debit is already written and nothing undoes it
            log_action(
                self.logger, "error", "Transfer credit failed after debit; ledger is inconsistent",
                user_id=from_id, action="transfer", resource=f"account:{to_id}",
                extra={"amount": amount, "debited_balance": new_from_balance},
                exc_info=True
            )
            raise

        return TransferResult(from_id, to_id, amount, new_from_balance, new_to_balance)

    def _transfer_saga(self, from_id: str, to_id: str, amount: int) -> TransferResult:
        def debit(current: int):
            if current < amount:
                return Abort("insufficient funds")
            return Commit(current - amount)

        debited = self.store.atomic_update(from_id, debit)
        if not debited.committed:
            raise InsufficientFundsError(from_id, debited.final_value, amount)

        try:
            credited = self.store.atomic_update(to_id, lambda current: Commit(current + amount))
        except StoreError:
            log_action(
                self.logger, "warning", "Transfer credit failed, re-crediting sender",
                user_id=from_id, action="transfer_compensate", resource=f"account:{to_id}",
                extra={"amount": amount},
                exc_info=True
            )
            try:
                self.store.atomic_update(from_id, lambda current: Commit(current + amount))
            except StoreError:
                log_action(
                    self.logger, "error", "Transfer compensation failed; ledger is inconsistent",
                    user_id=from_id, action="transfer_compensate", resource=f"account:{from_id}",
                    extra={"amount": amount, "debited_balance": debited.final_value},
                    exc_info=True
                )
                raise
            raise

        return TransferResult(from_id, to_id, amount, debited.final_value, credited.final_value)

    def adjust(self, account_id: str, delta: int) -> UpdateResult:
        """
        Add delta to a balance without ever going below zero.

        Args:
            account_id: Account to adjust
            delta: Non-zero number of units; negative removes units

        Returns:
            UpdateResult; committed is False (and the balance untouched) when
            a removal exceeds the balance

        Raises:
            ValidationError: If delta is zero or not an integer
            StoreError: If the store fails
        """
        if not _is_int(delta):
            raise ValidationError(ValidationError.INVALID_AMOUNT, f"Invalid delta: {delta!r}")
        if delta == 0:
            raise ValidationError(ValidationError.ZERO_DELTA, "Adjustment delta must be non-zero")

        def apply(current: int):
            updated = current + delta
            if updated < 0:
                return Abort("would go negative")
            return Commit(updated)

        result = self.store.atomic_update(account_id, apply)

        log_action(
            self.logger, "info" if result.committed else "warning",
            "Balance adjusted" if result.committed else "Balance adjustment aborted",
            action="adjust", resource=f"account:{account_id}",
            extra={
                "delta": delta,
                "committed": result.committed,
                "final_value": result.final_value,
                "attempts": result.attempts
            }
        )
        return result
