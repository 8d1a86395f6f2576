"""
Shared fixtures for ability service tests.
"""

import pytest

from service_abilities.app.clipboard.engine import Clipboard
from service_abilities.app.conductors import AbilityConductor
from service_abilities.app.persistence.memory import InMemoryRepository


@pytest.fixture
def repository():
    """Create an empty in-memory repository."""
    return InMemoryRepository()


@pytest.fixture
def clipboard(repository):
    """Create an uncached clipboard."""
    return Clipboard(repository)


@pytest.fixture
def conductor(repository, clipboard):
    """Create a conductor writing to the repository."""
    return AbilityConductor(repository, clipboard)


@pytest.fixture
def user(repository):
    """Create a persisted user."""
    return repository.create_entity("user", name="Taylor")
