"""
Shared fixtures.
"""

from pathlib import Path

import pytest

from tests.fakes import pattern


@pytest.fixture
def make_file(tmp_path):
    """Write a file of the given size with deterministic content."""
    def _make(size: int, name: str = 'payload.bin') -> Path:
        path = tmp_path / name
        path.write_bytes(pattern(size))
        return path
    return _make
