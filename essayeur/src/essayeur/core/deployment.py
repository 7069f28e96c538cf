"""
Deployment coordinator - runs migrations with reset semantics.

Every deploy discards the addresses recorded by earlier runs and migrates
from the start, so each rerun tests freshly deployed contracts.
"""

from pathlib import Path
from typing import Optional, Sequence

from shared.reporter.emojis import EssayeurEmoji
from shared.reporter.system_reporter import SystemReporter

from essayeur.config.settings import EssayeurConfig
from essayeur.core.protocols import MigrationRunner
from essayeur.domain.exceptions import DeployError, RunAborted


class DeploymentCoordinator:
    """Runs the migration collaborator and classifies its failures."""

    def __init__(
        self,
        config: EssayeurConfig,
        migration_runner: MigrationRunner,
        reporter: Optional[SystemReporter] = None,
    ):
        self.config = config
        self.migration_runner = migration_runner
        self.reporter = reporter or SystemReporter(
            name="deployment", level=20, verbose=1
        )

    async def deploy(self, artifacts: Sequence[Path]) -> None:
        """
        Deploy from a clean slate.

        Args:
            artifacts: Artifact paths from the build stage

        Raises:
            DeployError: On any migration failure
        """
        self.reporter.info(
            f"{EssayeurEmoji.DEPLOY} Running migrations (reset)",
            context="Deployment",
        )

        run_config = self.config.with_overrides(
            reset=True, quiet=True, files=list(artifacts)
        )

        try:
            await self.migration_runner.run(run_config)
        except (DeployError, RunAborted):
            raise
        except Exception as e:
            raise DeployError(
                f"Migration failed: {e}",
                details={"error_type": type(e).__name__},
            ) from e
