"""
Essayeur core - change detection, run state machine and pipeline stages.
"""

from essayeur.core.artifact_cache import ArtifactCache
from essayeur.core.build_pipeline import BuildPipeline
from essayeur.core.cancellation import CancellationToken
from essayeur.core.change_watcher import ChangeWatcher
from essayeur.core.deployment import DeploymentCoordinator
from essayeur.core.engine import TestExecutionEngine
from essayeur.core.reporter import EssayeurReporter
from essayeur.core.run_controller import RunController
from essayeur.core.sequencer import Sequencer
from essayeur.core.session import TestRunSession

__all__ = [
    "ArtifactCache",
    "BuildPipeline",
    "CancellationToken",
    "ChangeWatcher",
    "DeploymentCoordinator",
    "EssayeurReporter",
    "RunController",
    "Sequencer",
    "TestExecutionEngine",
    "TestRunSession",
]
