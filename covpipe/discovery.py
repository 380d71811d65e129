"""Locates compiled test executables in the build output directory."""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional, Sequence, Set

from .logging import get_logger
from .models import TestBinary

logger = get_logger("discovery")


def discover_test_binaries(
    build_output_dir: Path,
    patterns: Sequence[str],
    *,
    newer_than: Optional[float] = None,
) -> List[TestBinary]:
    """Return executables in ``build_output_dir`` whose names match any pattern.

    Only the directory itself is scanned. Each pattern is applied in turn and
    a file matching several patterns is returned once, at its first position.
    Non-executable artifacts (``.d`` files, rlibs) are skipped, and so are
    files last modified before ``newer_than`` when it is given.
    """
    if not build_output_dir.is_dir():
        logger.warning("Build output directory %s does not exist", build_output_dir)
        return []

    binaries: List[TestBinary] = []
    seen: Set[Path] = set()
    for pattern in patterns:
        for candidate in build_output_dir.glob(pattern):
            if not _is_executable_file(candidate):
                continue
            if newer_than is not None and candidate.stat().st_mtime < newer_than:
                logger.debug("Skipping stale artifact %s", candidate.name)
                continue
            binary = TestBinary(candidate)
            if binary.key in seen:
                continue
            seen.add(binary.key)
            binaries.append(binary)

    if not binaries:
        logger.warning(
            "No test binaries matching %s in %s", ", ".join(patterns), build_output_dir
        )
    else:
        logger.debug("Discovered %d test binaries", len(binaries))
    return binaries


def _is_executable_file(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


__all__ = ["discover_test_binaries"]
