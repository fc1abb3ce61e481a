"""
Shared pytest fixtures and configuration for retryspine tests.

This module provides:
- Automatic unit/integration markers based on test location
- Settings cache isolation between tests
- A seeded random source for reproducible jitter
"""

import random
import sys
from collections.abc import Generator
from pathlib import Path

import pytest

# Ensure retryspine package is importable without installation
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from retryspine.core.settings import get_settings  # noqa: E402


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def clean_settings_cache(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """
    Re-read settings for every test.

    Tests that set RETRYSPINE_* variables through monkeypatch get a fresh
    settings object and leave no cached values behind.
    """
    monkeypatch.chdir(Path(__file__).parent)
    get_settings(reload=True)
    yield
    get_settings(reload=True)


@pytest.fixture
def rng() -> random.Random:
    """Deterministic random source for jitter assertions."""
    return random.Random(1234)
