"""Shared pytest fixtures for datastore migrator tests."""

from pathlib import Path

import pytest

from tests.fakes import FakeRuntime


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def dump_dir(tmp_path: Path) -> Path:
    path = tmp_path / "dumps"
    path.mkdir()
    return path


@pytest.fixture
def services_root(tmp_path: Path) -> Path:
    path = tmp_path / "stacks"
    path.mkdir()
    return path
