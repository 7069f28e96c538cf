"""
Solidity compiler collaborator.

Staleness is decided by modification time: a source is stale when it is
newer than the artifacts built from it, or has never been built. Every
source importing a stale source, directly or transitively, is stale too.
"""

import asyncio
import json
import re
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from shared.reporter.emojis import EssayeurEmoji
from shared.reporter.system_reporter import SystemReporter

from essayeur.config.settings import EssayeurConfig
from essayeur.core.protocols import ModuleResolver
from essayeur.domain.exceptions import CompileError
from essayeur.infrastructure.resolver.artifact_resolver import ArtifactResolver

SOURCE_SUFFIX = ".sol"

IMPORT_PATTERN = re.compile(
    r"""^\s*import\s+(?:[^"';]*\s+from\s+)?["']([^"']+)["']""", re.MULTILINE
)


def parse_imports(source: Path) -> Set[Path]:
    """
    Resolve the relative imports of a Solidity file.

    Package imports (not starting with '.') are ignored.
    """
    text = source.read_text(errors="replace")
    imports = set()
    for target in IMPORT_PATTERN.findall(text):
        if target.startswith("."):
            imports.add((source.parent / target).resolve())
    return imports


class SolcCompiler:
    """Compiles contracts with the solc command line compiler."""

    def __init__(self, reporter: Optional[SystemReporter] = None):
        self.reporter = reporter or SystemReporter(
            name="solc_compiler", level=20, verbose=1
        )

    # ================================================================
    # SOURCES
    # ================================================================

    def sources(self, config: EssayeurConfig) -> List[Path]:
        """
        Every source of the project.

        contracts/**/*.sol plus any .sol file in config.files, resolved
        and de-duplicated.
        """
        found: List[Path] = []
        if config.contracts_path.is_dir():
            found.extend(sorted(config.contracts_path.rglob(f"*{SOURCE_SUFFIX}")))
        found.extend(Path(f) for f in config.files if Path(f).suffix == SOURCE_SUFFIX)

        unique: Dict[Path, None] = {}
        for path in found:
            unique.setdefault(path.resolve(), None)
        return list(unique)

    @staticmethod
    def built_at(artifacts: Iterable[Dict[str, Any]]) -> Dict[Path, float]:
        """Map each source path to the oldest build time of its artifacts."""
        built: Dict[Path, float] = {}
        for artifact in artifacts:
            source = artifact.get("sourcePath")
            updated = artifact.get("updatedAt")
            if not source or updated is None:
                continue
            key = Path(source).resolve()
            built[key] = min(float(updated), built.get(key, float("inf")))
        return built

    async def detect_stale(
        self, resolver: ModuleResolver, config: EssayeurConfig
    ) -> List[Path]:
        """
        Sources whose artifacts are out of date.

        Args:
            resolver: Resolver reading the current build output
            config: Project config; files adds candidate sources

        Returns:
            Stale sources plus their dependents, sorted
        """
        sources = self.sources(config)
        built = self.built_at(resolver.artifacts())

        stale: Set[Path] = set()
        imports: Dict[Path, Set[Path]] = {}
        for source in sources:
            try:
                mtime = source.stat().st_mtime
                imports[source] = parse_imports(source)
            except FileNotFoundError:
                # Deleted since it was listed
                self.reporter.warning(
                    f"Source disappeared: {source.name}", context="SolcCompiler"
                )
                continue
            except OSError as e:
                raise CompileError(
                    f"Cannot read {source}: {e}", details={"source": str(source)}
                ) from e

            if source not in built or mtime > built[source]:
                stale.add(source)

        changed = True
        while changed:
            changed = False
            for source, deps in imports.items():
                if source not in stale and deps & stale:
                    stale.add(source)
                    changed = True

        return sorted(stale)

    # ================================================================
    # COMPILE
    # ================================================================

    async def compile(self, config: EssayeurConfig) -> List[Path]:
        """
        Compile config.files, or every source with compile_all.

        Returns:
            Paths of the artifacts written

        Raises:
            CompileError: Missing compiler, failed compilation or
                          unreadable compiler output
        """
        files = self.sources(config) if config.compile_all else list(config.files)
        if not files:
            return []

        command = [
            config.solc_binary,
            "--combined-json",
            "abi,bin",
            "--base-path",
            str(config.working_directory),
            *[str(Path(f).resolve()) for f in files],
        ]

        self.reporter.info(
            f"{EssayeurEmoji.BUILD} Compiling {len(files)} file(s)",
            context="SolcCompiler",
        )
        for path in files:
            self.reporter.debug(f"  {path}", context="SolcCompiler")

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(config.working_directory),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CompileError(
                f"Compiler not available: {config.solc_binary} ({e})",
                details={"binary": config.solc_binary},
            ) from e

        stdout, stderr = await process.communicate()

        if process.returncode != 0:
            raise CompileError(
                f"Compilation failed:\n{stderr.decode(errors='replace').strip()}",
                details={
                    "files": [str(f) for f in files],
                    "returncode": process.returncode,
                },
            )

        try:
            output = json.loads(stdout)
        except ValueError as e:
            raise CompileError(f"Unreadable compiler output: {e}") from e

        return self.write_artifacts(output, config)

    def write_artifacts(self, output: Dict[str, Any], config: EssayeurConfig) -> List[Path]:
        """
        Write one artifact per contract in solc's combined JSON output.

        Recorded network addresses of existing artifacts are kept.
        """
        writer = ArtifactResolver(config.build_path, cache_on=False, reporter=self.reporter)
        updated_at = time.time()
        paths = []

        for key, contract in sorted((output.get("contracts") or {}).items()):
            source, _, name = key.rpartition(":")
            source_path = Path(source)
            if not source_path.is_absolute():
                source_path = config.working_directory / source_path

            abi = contract.get("abi", [])
            if isinstance(abi, str):
                abi = json.loads(abi)
            bytecode = contract.get("bin", "")

            networks = {}
            if writer.artifact_path(name).exists():
                networks = writer.load_artifact(name).get("networks") or {}

            paths.append(
                writer.write_artifact(
                    {
                        "contractName": name,
                        "abi": abi,
                        "bytecode": f"0x{bytecode}" if bytecode else "0x",
                        "sourcePath": str(source_path.resolve()),
                        "updatedAt": updated_at,
                        "networks": networks,
                    }
                )
            )

        self.reporter.info(
            f"{EssayeurEmoji.CONTRACT} Wrote {len(paths)} artifact(s) to "
            f"{config.build_path}",
            context="SolcCompiler",
        )
        return paths
