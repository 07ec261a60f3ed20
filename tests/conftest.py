"""Shared pytest fixtures."""

import pytest

from process_layout.config.settings import LayoutSettings
from tests.fixtures.solvers import LayeredStubSolver


@pytest.fixture
def settings():
    """Default layout settings (ignores LAYOUT_* environment overrides)."""
    return LayoutSettings()


@pytest.fixture
def stub_solver():
    """Deterministic layered solver standing in for ELK."""
    return LayeredStubSolver()
