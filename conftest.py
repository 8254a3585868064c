"""
Pytest configuration file.

This file is automatically loaded by pytest and provides global test configuration.
It ensures the project's source directory is added to the Python path so that
modules can be imported properly during test execution, and provides fixtures
that give each test its own file registry and uploads directory.
"""
import os
import sys

import pytest

# Add the current directory to the Python path
# This ensures imports work correctly when running tests
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))

from fastapi.testclient import TestClient  # noqa: E402

import main  # noqa: E402
from file_registry import FileRegistry  # noqa: E402


@pytest.fixture
def uploads_dir(tmp_path):
    """Empty uploads directory for one test."""
    path = tmp_path / "uploads"
    path.mkdir()
    return str(path)


@pytest.fixture
def registry():
    """Fresh, empty file registry."""
    return FileRegistry()


@pytest.fixture
def app_state(registry, uploads_dir):
    """
    Point the application at the test registry and uploads directory.

    The previous state is restored after the test.
    """
    previous_registry = main.app.state.registry
    previous_uploads_dir = main.app.state.uploads_dir
    main.app.state.registry = registry
    main.app.state.uploads_dir = uploads_dir
    yield main.app.state
    main.app.state.registry = previous_registry
    main.app.state.uploads_dir = previous_uploads_dir


@pytest.fixture
def client(app_state):
    """TestClient bound to the isolated application state."""
    return TestClient(main.app)
