"""
Collaborator interfaces the pipeline depends on.

The core never imports a concrete node, compiler, or migration runner;
the Sequencer wires in the defaults from essayeur.infrastructure unless
the caller supplies its own implementations.
"""

from pathlib import Path
from typing import Any, Dict, List, Protocol, Sequence, runtime_checkable

from essayeur.config.settings import EssayeurConfig


@runtime_checkable
class NetworkProvider(Protocol):
    """Starts and stops the ephemeral chain."""

    async def listen(self, port: int) -> Any:
        """Start serving on port and return a handle once reachable."""
        ...

    async def close(self) -> None:
        """Stop the chain. Safe to call more than once."""
        ...


@runtime_checkable
class AccountSource(Protocol):
    """Supplies the unlocked accounts of the chain."""

    async def get_accounts(self) -> List[str]:
        """Raises AccountFetchError if the chain is unreachable."""
        ...


@runtime_checkable
class ModuleResolver(Protocol):
    """Resolves a contract name to its deployed interface."""

    def require(self, name: str) -> Any: ...

    def artifacts(self) -> List[Dict[str, Any]]: ...


@runtime_checkable
class Compiler(Protocol):
    """Change detection and compilation of contract sources."""

    async def detect_stale(
        self, resolver: ModuleResolver, config: EssayeurConfig
    ) -> List[Path]:
        """Return sources whose artifacts are out of date."""
        ...

    async def compile(self, config: EssayeurConfig) -> List[Path]:
        """Compile config.files (or everything with compile_all)."""
        ...


@runtime_checkable
class MigrationRunner(Protocol):
    """Deploys contracts to the chain."""

    async def run(self, config: EssayeurConfig) -> None: ...


@runtime_checkable
class ExecutionEngine(Protocol):
    """Executes the test files of one session."""

    supports_abort: bool

    async def run(
        self, session: Any, test_files: Sequence[Path], token: Any
    ) -> Any: ...
