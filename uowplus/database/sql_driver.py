from sqlmodel import SQLModel
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession
from uowplus.logging.logger import get_logger
from .base import BaseDatabaseDriver

logger = get_logger("sql_driver")


def _take_over_sqlite_transactions(engine):
    """Emit BEGIN ourselves so SAVEPOINTs nest inside the enclosing transaction."""

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


class SQLDriver(BaseDatabaseDriver):
    """Async SQL engine plus the session factory units of work are built from."""

    def __init__(self, url: str, echo: bool = False, create_tables: bool = True, **engine_kwargs):
        self.url = url
        self.create_tables = create_tables
        self.engine = create_async_engine(url, echo=echo, future=True, **engine_kwargs)
        if self.engine.dialect.name == "sqlite":
            _take_over_sqlite_transactions(self.engine)
        # expire_on_commit=False: attributes stay readable after save() without a lazy reload
        self.session_factory = sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def connect(self):
        """Check the database answers; create missing tables when enabled."""
        async with self.engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            if self.create_tables:
                await conn.run_sync(SQLModel.metadata.create_all)
        logger.info(f"Connected to {self.engine.url.render_as_string(hide_password=True)}")

    async def disconnect(self):
        await self.engine.dispose()
        logger.info("Database engine disposed")
