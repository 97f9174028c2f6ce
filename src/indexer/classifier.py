"""Relevance check for ledger transactions against the launchpad program."""

from src.parsers.aptos.models import AptosTransaction

TOKEN_FACTORY_MODULE = "token_factory"
BONDING_CURVE_MODULE = "bonding_curve_pool"
PROGRAM_MODULES = (TOKEN_FACTORY_MODULE, BONDING_CURVE_MODULE)


def normalize_address(address: str) -> str:
    return address.strip().lower()


class TransactionClassifier:
    """Decides whether a transaction belongs to the indexed program.

    Entry-function prefixes are the fast path. The event scan catches
    program side effects of calls whose entry point lives elsewhere.
    """

    def __init__(self, program_address: str) -> None:
        self._program = normalize_address(program_address)
        self._prefixes = tuple(f"{self._program}::{m}" for m in PROGRAM_MODULES)

    @property
    def program_address(self) -> str:
        return self._program

    def module_function(self, module: str, function: str) -> str:
        return f"{self._program}::{module}::{function}"

    def matches_entry_point(self, tx: AptosTransaction) -> bool:
        function = tx.entry_function
        return bool(function) and normalize_address(function).startswith(self._prefixes)

    def has_program_event(self, tx: AptosTransaction) -> bool:
        return any(self._program in normalize_address(ev.type) for ev in tx.events)

    def is_relevant(self, tx: AptosTransaction) -> bool:
        return self.matches_entry_point(tx) or self.has_program_event(tx)
