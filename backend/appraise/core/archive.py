"""Zip a run's log file and trace files for download."""

from __future__ import annotations

import io
import logging
import zipfile
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path

from appraise.core.errors import ArchiveNoFiles, RunNotFound

logger = logging.getLogger(__name__)


@dataclass
class RunArtifacts:
    """Files a run may have produced. Paths may point at missing files."""

    log_path: str | None = None
    trace_paths: list[str] = field(default_factory=list)


ArtifactLookup = Callable[[str], Awaitable[RunArtifacts | None]]


class ArchiveAssembler:
    """Builds the downloadable archive of a run."""

    def __init__(self, artifact_lookup: ArtifactLookup) -> None:
        self._artifact_lookup = artifact_lookup

    async def build_archive(self, run_id: str) -> io.BytesIO:
        """Return a zip stream positioned at 0.

        Raises ``RunNotFound`` for unknown runs and ``ArchiveNoFiles`` when
        none of the run's files exist on disk.
        """
        artifacts = await self._artifact_lookup(run_id)
        if artifacts is None:
            raise RunNotFound(f"Test run {run_id} not found")
        return self.assemble(run_id, artifacts)

    def assemble(self, run_id: str, artifacts: RunArtifacts) -> io.BytesIO:
        candidates: list[tuple[Path, str]] = []
        if artifacts.log_path:
            log_file = Path(artifacts.log_path)
            candidates.append((log_file, f"logs/{log_file.name}"))
        used_names: set[str] = set()
        for trace_path in artifacts.trace_paths:
            if not trace_path:
                continue
            trace_file = Path(trace_path)
            name = f"traces/{trace_file.name}"
            # Dedup with numeric suffix
            if name in used_names:
                counter = 2
                while f"traces/{trace_file.stem}_{counter}{trace_file.suffix}" in used_names:
                    counter += 1
                name = f"traces/{trace_file.stem}_{counter}{trace_file.suffix}"
            used_names.add(name)
            candidates.append((trace_file, name))

        buf = io.BytesIO()
        added = 0
        with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
            for path, arcname in candidates:
                if not path.is_file():
                    logger.warning("archive: file not found for run %s: %s", run_id, path)
                    continue
                try:
                    zf.write(path, arcname)
                except OSError as exc:
                    logger.warning("archive: could not add %s for run %s: %s", path, run_id, exc)
                    continue
                added += 1

        if not added:
            raise ArchiveNoFiles(f"No log or trace files available for test run {run_id}")

        logger.info("archive: built archive for run %s with %d file(s)", run_id, added)
        buf.seek(0)
        return buf
