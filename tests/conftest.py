from unittest.mock import AsyncMock

import pytest

from cds_knowledge.knowledge import KnowledgeBase


@pytest.fixture(scope="session")
def kb():
    """Load the shipped catalogs once for the entire test session."""
    k = KnowledgeBase()
    k.load()
    return k


@pytest.fixture
def mock_db():
    """AsyncMock standing in for AsyncSession; flush/commit are no-ops."""
    return AsyncMock()
