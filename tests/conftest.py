from __future__ import annotations

import logging
from pathlib import Path

import pytest

from tests._fixtures.workspace_builder import ScriptedRunner, WorkspaceBuilder


@pytest.fixture
def workspace(tmp_path: Path) -> WorkspaceBuilder:
    """Provide a fake Cargo workspace rooted at the pytest tmp_path."""
    return WorkspaceBuilder(tmp_path)


@pytest.fixture
def scripted_runner() -> ScriptedRunner:
    return ScriptedRunner()


@pytest.fixture(autouse=True)
def _reset_covpipe_logger():
    """Undo CLI logging configuration so caplog sees covpipe records."""
    yield
    logger = logging.getLogger("covpipe")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
