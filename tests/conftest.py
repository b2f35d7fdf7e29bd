"""
Pytest configuration and shared fixtures for Luvio Chat tests.
"""

import pytest
import tempfile
import shutil
from pathlib import Path
from typing import AsyncGenerator, Generator

# Add src to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from luvio_chat.storage.database import Database
from luvio_chat.storage.conversations import SQLiteConversationStore


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
async def test_db(temp_dir: Path) -> AsyncGenerator[Database, None]:
    """Create a test database."""
    db = Database(temp_dir / "test.db")
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
async def conversation_store(test_db: Database) -> AsyncGenerator[SQLiteConversationStore, None]:
    """Create an initialized conversation store."""
    store = SQLiteConversationStore(test_db, user_id="user-1")
    await store.initialize()
    yield store
