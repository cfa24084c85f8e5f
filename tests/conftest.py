"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from pathlib import Path

import pytest

# Add project root (and this directory, for builders) to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(Path(__file__).parent))

from builders import make_graph, make_lego, make_phrase  # noqa: E402
from helix.content.demo import build_demo_course  # noqa: E402
from helix.content.graph import LegoPosition  # noqa: E402
from helix.content.sources import StaticContentGraphSource, build_course_graph  # noqa: E402
from helix.db.memory_store import InMemoryProgressStore  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (SQLite database)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def demo_course():
    """Raw demo course document (12 seeds, two LEGOs each)."""
    return build_demo_course("demo", 12)


@pytest.fixture
def demo_graph(demo_course):
    return build_course_graph(demo_course)


@pytest.fixture
def demo_source(demo_graph):
    return StaticContentGraphSource(demo_graph)


@pytest.fixture
def memory_store():
    return InMemoryProgressStore()


@pytest.fixture
def single_lego_graph():
    """30 seeds with one Atomic LEGO each; every LEGO has two eternal phrases."""
    legos = [make_lego(n) for n in range(1, 31)]
    phrases = []
    for lego in legos:
        for i, position in enumerate((LegoPosition.START, LegoPosition.END)):
            phrases.append(make_phrase(f"{lego.id}-E{i}", lego.id, lego_position=position, position=i))
    return make_graph(legos, phrases)
