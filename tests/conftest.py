"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.core.components import ComponentType  # noqa: E402
from src.core.models import LanguageObject, ObjectValueVector, OutcomeRecord  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (in-memory database)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")


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
def now():
    """Fixed reference time for deterministic tests."""
    return datetime(2025, 3, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def make_object():
    """Factory for language objects."""

    def _make(object_id, component=ComponentType.LEX, content=None, **values):
        return LanguageObject(
            object_id=object_id,
            content=content or object_id,
            component=component,
            values=ObjectValueVector(**values),
        )

    return _make


@pytest.fixture
def sample_catalog(make_object):
    """One object per component with content that exercises the pattern heuristics."""
    return {
        "phon-1": make_object("phon-1", ComponentType.PHON, "think"),
        "morph-1": make_object("morph-1", ComponentType.MORPH, "walking"),
        "lex-1": make_object("lex-1", ComponentType.LEX, "house"),
        "synt-1": make_object("synt-1", ComponentType.SYNT, "if it rains, we stay"),
        "prag-1": make_object("prag-1", ComponentType.PRAG, "could you please help"),
    }


@pytest.fixture
def make_records(now):
    """
    Factory for outcome records.

    Builds `total` records for one component, the first `errors` incorrect,
    spaced one hour apart and ending an hour before `now`.
    """
    object_by_component = {
        ComponentType.PHON: "phon-1",
        ComponentType.MORPH: "morph-1",
        ComponentType.LEX: "lex-1",
        ComponentType.SYNT: "synt-1",
        ComponentType.PRAG: "prag-1",
    }

    def _make(component, total, errors, session_id="s1", learner_id="learner-1", start=None):
        start = start or now - timedelta(hours=total + 1)
        return [
            OutcomeRecord(
                learner_id=learner_id,
                object_id=object_by_component[component],
                component=component,
                correct=i >= errors,
                latency_ms=2000,
                cue_level=0,
                session_id=session_id,
                timestamp=start + timedelta(hours=i),
            )
            for i in range(total)
        ]

    return _make
