# bakery_pos/database/database.py
import asyncpg
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional
from ..config import Config
from .unit_of_work import UnitOfWork

MIGRATIONS_DIR = Path(__file__).parent / "migrations"
MIGRATION_LOCK_ID = 7315001

class Database:
    """Connection pool, migrations and transaction scopes for PostgreSQL"""

    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn or Config.DATABASE_URL
        self.pool: Optional[asyncpg.Pool] = None
        self.logger = logging.getLogger(__name__)

    async def connect(self):
        """Open the pool and apply pending migrations"""
        if not self.dsn:
            raise ValueError("No DATABASE_URL set in environment")

        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=Config.DB_POOL_MIN_SIZE,
                max_size=Config.DB_POOL_MAX_SIZE
            )

            await self._run_migrations()

            self.logger.info("Database connection established")
        except Exception as e:
            self.logger.error(f"Database connection failed: {e}")
            raise

    async def close(self):
        """Close the pool"""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("Database connection closed")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[UnitOfWork]:
        """Unit of work inside one database transaction; rolls back on error"""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield UnitOfWork(conn)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[UnitOfWork]:
        """Unit of work for reads outside an explicit transaction"""
        async with self.pool.acquire() as conn:
            yield UnitOfWork(conn)

    async def _run_migrations(self):
        """Apply pending ``.sql`` files in name order, one transaction each"""
        async with self.pool.acquire() as conn:
            # serialise concurrent app instances starting at the same time
            await conn.execute("SELECT pg_advisory_lock($1)", MIGRATION_LOCK_ID)
            try:
                await conn.execute("""
                    CREATE TABLE IF NOT EXISTS migrations (
                        migration_id SERIAL PRIMARY KEY,
                        name VARCHAR(255) NOT NULL UNIQUE,
                        applied_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
                    )
                """)
                applied = {
                    row['name'] for row in await conn.fetch("SELECT name FROM migrations")
                }

                for path in sorted(MIGRATIONS_DIR.glob("*.sql")):
                    if path.name in applied:
                        continue
                    await self._apply_migration(conn, path)
            finally:
                await conn.execute("SELECT pg_advisory_unlock($1)", MIGRATION_LOCK_ID)

    async def _apply_migration(self, conn, path: Path):
        try:
            async with conn.transaction():
                await conn.execute(path.read_text())
                await conn.execute("INSERT INTO migrations (name) VALUES ($1)", path.name)
        except Exception as e:
            self.logger.error(f"Migration {path.name} failed: {e}")
            raise

        self.logger.info(f"Migration {path.name} applied")
