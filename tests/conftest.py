"""Shared fixtures."""

from pathlib import Path

import pytest

from tax_rules.logging_config import reset_logging

EXAMPLES_DIR = Path(__file__).resolve().parent.parent / "examples"


@pytest.fixture(autouse=True)
def _reset_logging():
    # CLI tests install a rich handler that stops propagation to caplog
    reset_logging()
    yield
    reset_logging()


@pytest.fixture
def sample_rules_path() -> Path:
    return EXAMPLES_DIR / "sample_rules.json"


@pytest.fixture
def sample_contexts_path() -> Path:
    return EXAMPLES_DIR / "sample_contexts.csv"
