"""Diagnostic package: bundle recent log artifacts into one zip archive."""

from __future__ import annotations

import asyncio
import logging
import zipfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

from ..utils.cancellation import CancellationToken, ensure_token

logger = logging.getLogger(__name__)

PACKAGE_PREFIX = "diagnostic-package-"
DEFAULT_WINDOW = timedelta(days=7)


def _collect(directory: Path, since: datetime) -> List[Path]:
    cutoff = since.timestamp()
    files: List[Path] = []
    for entry in sorted(directory.iterdir()):
        if not entry.is_file() or entry.name.startswith(PACKAGE_PREFIX):
            continue
        stat = entry.stat()
        if max(stat.st_mtime, stat.st_ctime) >= cutoff:
            files.append(entry)
    return files


def _write_archive(
    output: Path, files: List[Path], cancellation: CancellationToken
) -> None:
    with zipfile.ZipFile(output, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for path in files:
            cancellation.raise_if_cancelled()
            archive.write(path, arcname=path.name)


async def create_diagnostic_package(
    log_directory: Path,
    since: Optional[datetime] = None,
    output_path: Optional[Path] = None,
    cancellation: Optional[CancellationToken] = None,
) -> Path:
    """Zip every file in ``log_directory`` touched since ``since``.

    Parameters
    ----------
    log_directory: Path
        Directory holding sink artifacts (top level only).
    since: Optional[datetime]
        Lower bound on modification time; defaults to seven days ago. Naive
        datetimes are taken as UTC.
    output_path: Optional[Path]
        Archive location; defaults to
        ``<log_directory>/diagnostic-package-<YYYYmmdd-HHMMSS>.zip``.

    Returns
    -------
    Path
        Location of the written archive.

    Raises
    ------
    FileNotFoundError
        If ``log_directory`` does not exist.
    ValueError
        If no files fall inside the window.
    """
    token = ensure_token(cancellation)
    directory = Path(log_directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Log directory '{directory}' was not found")

    now = datetime.now(timezone.utc)
    window_start = since or (now - DEFAULT_WINDOW)
    if window_start.tzinfo is None:
        window_start = window_start.replace(tzinfo=timezone.utc)

    files = _collect(directory, window_start)
    if not files:
        raise ValueError(f"No log files were found in '{directory}'")

    output = Path(output_path) if output_path else (
        directory / f"{PACKAGE_PREFIX}{now:%Y%m%d-%H%M%S}.zip"
    )
    await asyncio.to_thread(_write_archive, output, files, token)
    logger.info(
        "package.created",
        extra={"path": str(output), "files": len(files), "since": window_start.isoformat()},
    )
    return output
