"""Interfaces the ledger consumes from the outside world"""

import time
from typing import Callable, List, Protocol

from peerpool_ledger.domain.models import LedgerChanges, LedgerEvent, LedgerState


class TransferService(Protocol):
    """Single-asset value transfer. A False return is a hard failure."""

    def transfer(self, to: str, amount: int) -> bool:
        ...

    def transfer_from(self, sender: str, to: str, amount: int) -> bool:
        ...

    def balance_of(self, account: str) -> int:
        ...


class LedgerStore(Protocol):
    """
    Durable home of the ledger state.

    `save` receives the records touched by one call together with the
    notifications it raised, and must write both or neither. Raising from
    `save` rolls the call back.
    """

    def load(self) -> LedgerState:
        ...

    def save(self, changes: LedgerChanges, events: List[LedgerEvent]) -> None:
        ...


class Clock(Protocol):
    def now(self) -> int:
        ...


class SystemClock:
    """Wall-clock seconds since epoch"""

    def now(self) -> int:
        return int(time.time())


OwnerCheck = Callable[[str], bool]
