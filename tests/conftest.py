"""
Pytest configuration and fixtures.
"""

import io
import sys
from pathlib import Path

import pytest

# Modules live at the project root
sys.path.insert(0, str(Path(__file__).parent.parent))

from gridterm import Terminal  # noqa: E402


@pytest.fixture
def stream() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def terminal(stream: io.StringIO) -> Terminal:
    """A 24x80 terminal that writes into an in-memory buffer."""
    return Terminal(stream, size=(24, 80))
