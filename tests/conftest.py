"""Shared fixtures for diskscope tests."""

import pytest

from helpers import MB, make_file


@pytest.fixture
def sample_tree(tmp_path):
    """root/a.bin (10 MB), root/b.bin (5 MB), root/sub/c.bin (2 MB)."""
    make_file(tmp_path / "a.bin", 10 * MB)
    make_file(tmp_path / "b.bin", 5 * MB)
    make_file(tmp_path / "sub" / "c.bin", 2 * MB)
    return tmp_path
