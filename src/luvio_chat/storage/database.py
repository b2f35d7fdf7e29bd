"""
Async SQLite access for Luvio Chat.

One serialized aiosqlite connection per database, with:
- File or in-memory databases
- Foreign key enforcement
- WAL journaling for file databases
- Atomic multi-statement batches
"""

import asyncio
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

import aiosqlite

from ..utils.logging import get_logger

logger = get_logger("luvio-chat.storage.database")


MEMORY = ":memory:"

Statement = Tuple[str, Sequence]


class Database:
    """Serialized access to one SQLite database."""

    def __init__(self, db_path: Path | str):
        """
        Args:
            db_path: Database file, or ``:memory:``
        """
        self.db_path = db_path if str(db_path) == MEMORY else Path(db_path)
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    @property
    def in_memory(self) -> bool:
        return not isinstance(self.db_path, Path)

    @property
    def connected(self) -> bool:
        return self._connection is not None

    def _pragmas(self) -> List[str]:
        pragmas = ["PRAGMA foreign_keys = ON"]
        if not self.in_memory:
            pragmas += ["PRAGMA journal_mode = WAL", "PRAGMA synchronous = NORMAL"]
        return pragmas

    async def connect(self) -> None:
        async with self._lock:
            await self._connect()

    async def _connect(self) -> aiosqlite.Connection:
        if self._connection is None:
            if not self.in_memory:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # Autocommit; batches open their own transactions
            connection = await aiosqlite.connect(self.db_path, isolation_level=None)
            for pragma in self._pragmas():
                await connection.execute(pragma)
            self._connection = connection
            logger.debug("database_connected", path=str(self.db_path))
        return self._connection

    async def close(self) -> None:
        async with self._lock:
            if self._connection is not None:
                await self._connection.close()
                self._connection = None

    async def execute(self, sql: str, parameters: Sequence = ()) -> aiosqlite.Cursor:
        async with self._lock:
            connection = await self._connect()
            return await connection.execute(sql, parameters)

    async def executescript(self, script: str) -> None:
        async with self._lock:
            connection = await self._connect()
            await connection.executescript(script)

    async def execute_batch(self, statements: Iterable[Statement]) -> None:
        """
        Run statements in one transaction.

        Either every statement is applied or, if one fails, none is and the
        error propagates.
        """
        async with self._lock:
            connection = await self._connect()
            await connection.execute("BEGIN")
            try:
                for sql, parameters in statements:
                    await connection.execute(sql, parameters)
            except BaseException:
                await connection.execute("ROLLBACK")
                raise
            await connection.execute("COMMIT")

    async def fetchone(self, sql: str, parameters: Sequence = ()) -> Optional[tuple]:
        cursor = await self.execute(sql, parameters)
        return await cursor.fetchone()

    async def fetchall(self, sql: str, parameters: Sequence = ()) -> List[tuple]:
        cursor = await self.execute(sql, parameters)
        return await cursor.fetchall()

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


__all__ = ['Database', 'MEMORY']
