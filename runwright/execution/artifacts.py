"""
Artifact capture policy and storage.

Decides which artifacts each attempt records and which ones survive once
the unit's outcome is known, and lays artifacts out on disk per run.
"""

import re
from pathlib import Path
from typing import Iterable, List, Tuple

from ..core.logging_config import get_logger
from .models import ArtifactCapture, ArtifactRef, ArtifactType

FIRST_RETRY_ATTEMPT = 2


class ArtifactPolicy:
    """
    Retention rules for test artifacts.

    - trace: recorded only on the first retry after an initial failure
    - screenshot: recorded on the last allowed attempt, kept only if that
      attempt failed
    - video: recorded on every attempt, only the final attempt's video is
      kept and only when the unit ultimately fails
    """

    def capture_for(self, attempt: int, max_attempts: int) -> ArtifactCapture:
        """Return the capture switches for an attempt."""
        return ArtifactCapture(
            trace=attempt == FIRST_RETRY_ATTEMPT,
            screenshot=attempt == max_attempts,
            video=True,
        )

    def partition(
        self,
        artifacts: Iterable[ArtifactRef],
        attempt: int,
        is_final: bool,
        unit_failed: bool,
    ) -> Tuple[List[ArtifactRef], List[ArtifactRef]]:
        """
        Split an attempt's artifacts into (keep, discard).

        Args:
            artifacts: Artifacts the attempt produced
            attempt: Attempt number, starting at 1
            is_final: No further attempt will run for this unit
            unit_failed: The unit's final status is failed
        """
        keep: List[ArtifactRef] = []
        discard: List[ArtifactRef] = []
        seen = set()

        for artifact in artifacts:
            if artifact.artifact_type == ArtifactType.TRACE:
                retained = attempt == FIRST_RETRY_ATTEMPT
            else:
                retained = is_final and unit_failed

            # At most one artifact of each type per attempt
            if retained and artifact.artifact_type not in seen:
                seen.add(artifact.artifact_type)
                keep.append(artifact)
            else:
                discard.append(artifact)

        return keep, discard


class ArtifactManager:
    """
    Manages on-disk artifact layout for a run.

    Layout: ``<root>/<run_id>/<environment>/<unit>/attempt-<n>/``.
    """

    def __init__(self, artifacts_root: Path, run_id: str):
        self.artifacts_root = Path(artifacts_root)
        self.run_id = run_id
        self.run_dir = self.artifacts_root / run_id
        self.logger = get_logger(__name__, run_id=run_id)

    @staticmethod
    def _slug(value: str) -> str:
        return re.sub(r"[^A-Za-z0-9._-]+", "-", value).strip("-") or "unit"

    def attempt_dir(self, environment: str, unit_id: str, attempt: int) -> Path:
        """Create and return the directory for one attempt."""
        path = (
            self.run_dir
            / self._slug(environment)
            / self._slug(unit_id)
            / f"attempt-{attempt}"
        )
        path.mkdir(parents=True, exist_ok=True)
        return path

    def discard(self, artifacts: Iterable[ArtifactRef]) -> int:
        """Delete artifact files that the policy does not retain."""
        removed = 0
        for artifact in artifacts:
            try:
                artifact.path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                self.logger.warning(f"Failed to delete artifact {artifact.path}: {e}")
                continue
            self._remove_if_empty(artifact.path.parent)
        if removed:
            self.logger.debug(f"Discarded {removed} artifact(s)")
        return removed

    def _remove_if_empty(self, directory: Path) -> None:
        try:
            if directory.is_dir() and not any(directory.iterdir()):
                directory.rmdir()
        except OSError:
            pass
