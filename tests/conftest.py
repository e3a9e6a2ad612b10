"""
Shared pytest fixtures.
"""

import tempfile
from pathlib import Path

import pytest

from loopwarden.output import set_quiet


@pytest.fixture(autouse=True)
def quiet_output():
    """Silence console banners and warnings during tests."""
    set_quiet(True)
    yield
    set_quiet(False)


@pytest.fixture
def temp_dir():
    """Create a temporary working directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)
