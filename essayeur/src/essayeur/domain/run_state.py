"""
Run state machine vocabulary.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class RunState(Enum):
    """Controller state. Exactly one is active at a time."""

    IDLE = "idle"
    BUILDING = "building"
    DEPLOYING = "deploying"
    RUNNING = "running"
    ABORTING = "aborting"

    @property
    def in_progress(self) -> bool:
        """True while a run owns the pipeline."""
        return self is not RunState.IDLE


class Stage(Enum):
    """Pipeline stage reported through on_stage_complete."""

    BUILD = "build"
    DEPLOY = "deploy"
    TEST = "test"


@dataclass(frozen=True)
class ChangeEvent:
    """A watched file's modification time advanced."""

    file_path: Path
    observed_at: float = field(default_factory=time.time)
