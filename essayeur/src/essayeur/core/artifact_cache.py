"""
Artifact cache - loaded test modules, purged before every run.

Test modules are executed by their import loader with bytecode writes
disabled, and any cached bytecode for the file is dropped first, so two
edits within the same second are never served stale.
"""

import hashlib
import importlib
import importlib.util
import sys
from pathlib import Path
from types import ModuleType
from typing import Callable, Dict, Iterable, List, Optional, Set

from shared.reporter.emojis import SystemEmoji
from shared.reporter.system_reporter import SystemReporter


class ArtifactCache:
    """
    Holds test modules loaded during the current run.

    purge() drops every cached module from both this cache and
    sys.modules, including helper modules imported from watched files.
    """

    def __init__(
        self,
        watched_files: Iterable[Path] = (),
        reporter: Optional[SystemReporter] = None,
    ):
        """
        Initialize artifact cache.

        Args:
            watched_files: Files whose modules must never survive a purge
            reporter: Optional reporter for logging
        """
        self.reporter = reporter or SystemReporter(
            name="artifact_cache", level=20, verbose=1
        )
        self._watched: Set[Path] = {Path(f).resolve() for f in watched_files}
        self._modules: Dict[Path, ModuleType] = {}
        self._listeners: List[Callable[[], None]] = []
        self.purge_count = 0

    def __len__(self) -> int:
        return len(self._modules)

    def __contains__(self, path: object) -> bool:
        return isinstance(path, Path) and path.resolve() in self._modules

    @property
    def is_empty(self) -> bool:
        return not self._modules

    def on_purge(self, listener: Callable[[], None]) -> None:
        """Register a callback invoked after every purge."""
        self._listeners.append(listener)

    @staticmethod
    def module_name(path: Path) -> str:
        """Stable, collision-free module name for a test file."""
        digest = hashlib.sha1(str(path).encode("utf-8")).hexdigest()[:10]
        return f"essayeur_test_{path.stem}_{digest}"

    def load(self, path: Path) -> ModuleType:
        """
        Load a test module, reusing the cached one within a run.

        Args:
            path: Python test file

        Returns:
            Executed module

        Raises:
            Any exception raised while executing the module body
        """
        path = Path(path).resolve()

        if path in self._modules:
            return self._modules[path]

        name = self.module_name(path)
        spec = importlib.util.spec_from_file_location(name, path)
        module = importlib.util.module_from_spec(spec)

        # Test files import siblings from their own directory
        test_dir = str(path.parent)
        if test_dir not in sys.path:
            sys.path.insert(0, test_dir)

        Path(importlib.util.cache_from_source(str(path))).unlink(missing_ok=True)

        sys.modules[name] = module
        dont_write_bytecode = sys.dont_write_bytecode
        sys.dont_write_bytecode = True
        try:
            spec.loader.exec_module(module)
        except BaseException:
            sys.modules.pop(name, None)
            raise
        finally:
            sys.dont_write_bytecode = dont_write_bytecode

        self._modules[path] = module
        self.reporter.debug(f"Loaded {path.name}", context="ArtifactCache")
        return module

    def purge(self) -> int:
        """
        Drop every cached module.

        Returns:
            Number of sys.modules entries removed
        """
        removed = 0

        for path in list(self._modules):
            if sys.modules.pop(self.module_name(path), None) is not None:
                removed += 1
        self._modules.clear()

        # Helpers imported by tests through the normal import system
        for name, module in list(sys.modules.items()):
            module_file = getattr(module, "__file__", None)
            if module_file and Path(module_file).resolve() in self._watched:
                del sys.modules[name]
                removed += 1

        importlib.invalidate_caches()
        self.purge_count += 1

        self.reporter.debug(
            f"{SystemEmoji.CLEANUP} Purged {removed} module(s)",
            context="ArtifactCache",
        )

        for listener in self._listeners:
            listener()

        return removed
