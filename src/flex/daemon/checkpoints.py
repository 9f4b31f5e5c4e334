"""Checkpoint directory allocation and lookup under ``<dir>/checkpoints``."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from flex.shared.exceptions import CheckpointError

logger = logging.getLogger(__name__)

# Ids are allocated by linear scan over [0, MAX_CHECKPOINTS)
MAX_CHECKPOINTS = 1000


class CheckpointStore:
    """Filesystem convention for checkpoints: ``<root>/<container>/<id>/``.

    Nothing is cached in memory; every lookup goes back to the filesystem.
    """

    def __init__(self, root: Path, *, limit: int = MAX_CHECKPOINTS) -> None:
        self.root = root
        self._limit = limit

    def path(self, name: str, checkpoint_id: int) -> Path:
        return self._container_dir(name) / str(checkpoint_id)

    def allocate(self, name: str) -> tuple[int, Path]:
        """Create the directory for the lowest free checkpoint id of ``name``.

        Directory creation is the allocation, so two concurrent callers can
        never be handed the same id.

        Raises:
            CheckpointError: If every id below the limit is taken.
        """
        container_dir = self._container_dir(name)
        try:
            container_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as exc:
            raise CheckpointError("failed making checkpoint directory") from exc

        for checkpoint_id in range(self._limit):
            path = container_dir / str(checkpoint_id)
            try:
                path.mkdir(mode=0o700)
            except FileExistsError:
                continue
            except OSError as exc:
                raise CheckpointError("failed making checkpoint dir") from exc
            logger.debug("allocated checkpoint %d for %s", checkpoint_id, name)
            return checkpoint_id, path

        raise CheckpointError(f"too many checkpoints for {name} (limit {self._limit})")

    def locate(self, name: str, raw_id: str) -> Path:
        """Return the existing checkpoint directory for ``(name, raw_id)``.

        Raises:
            CheckpointError: If the id is malformed or the directory is missing.
        """
        raw_id = raw_id.strip()
        if not (raw_id.isascii() and raw_id.isdigit()):
            raise CheckpointError(f"invalid checkpoint id: {raw_id!r}")

        path = self.path(name, int(raw_id))
        if not path.exists():
            raise CheckpointError("checkpoint doesn't exist!")
        if not path.is_dir():
            raise CheckpointError("checkpoint isn't a directory")
        return path

    def discard(self, path: Path) -> None:
        """Remove a checkpoint directory that never received a complete dump."""
        shutil.rmtree(path, ignore_errors=True)
        logger.debug("discarded checkpoint directory %s", path)

    def _container_dir(self, name: str) -> Path:
        if not name or "/" in name or name in (".", ".."):
            raise CheckpointError(f"invalid container name: {name!r}")
        return self.root / name
