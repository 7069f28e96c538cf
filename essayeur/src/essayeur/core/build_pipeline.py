"""
Build pipeline - adapter over the compiler collaborator.

Asks the compiler which sources are stale, compiles exactly those (the
compiler adds their dependents), and returns the artifact paths.
"""

import time
from pathlib import Path
from typing import List, Optional, Sequence

from shared.reporter.emojis import EssayeurEmoji
from shared.reporter.system_reporter import SystemReporter

from essayeur.config.settings import EssayeurConfig
from essayeur.core.protocols import Compiler, ModuleResolver


class BuildPipeline:
    """
    Compiles stale contract sources.

    Compiler errors propagate unmodified; there is no partial-compile
    recovery.
    """

    def __init__(
        self,
        config: EssayeurConfig,
        compiler: Compiler,
        resolver: ModuleResolver,
        reporter: Optional[SystemReporter] = None,
    ):
        """
        Initialize build pipeline.

        Args:
            config: Project configuration
            compiler: Compiler collaborator
            resolver: Resolver used for staleness checks
            reporter: Optional reporter for logging
        """
        self.config = config
        self.compiler = compiler
        self.resolver = resolver
        self.reporter = reporter or SystemReporter(
            name="build_pipeline", level=20, verbose=1
        )

    async def build_if_stale(self, candidate_files: Sequence[Path] = ()) -> List[Path]:
        """
        Compile whatever is stale.

        Args:
            candidate_files: Extra sources (e.g. Solidity helpers in the
                             test directory) considered alongside the
                             project's contracts

        Returns:
            Artifact paths written by this build (empty if nothing stale)
        """
        start_time = time.time()

        stale_config = self.config.with_overrides(files=list(candidate_files))
        stale = list(await self.compiler.detect_stale(self.resolver, stale_config))

        if stale:
            self.reporter.info(
                f"{EssayeurEmoji.BUILD} Compiling {len(stale)} stale source(s)",
                context="BuildPipeline",
            )
        else:
            self.reporter.debug(
                "No stale sources detected", context="BuildPipeline"
            )

        artifacts = await self.compiler.compile(
            self.config.with_overrides(
                files=stale,
                compile_all=self.config.compile_all,
                quiet=False,
            )
        )
        artifacts = list(artifacts or [])

        self.reporter.debug(
            f"Build produced {len(artifacts)} artifact(s) "
            f"({time.time() - start_time:.2f}s)",
            context="BuildPipeline",
        )
        return artifacts
