from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from singlepiece.config.settings import config_settings
from singlepiece.db.utils import _normalize_db_url, install_sqlite_pragmas, is_sqlite


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    url = _normalize_db_url(url)
    if is_sqlite(url):
        # one connection per checkout so sqlite's file lock arbitrates writers
        engine = create_async_engine(url, echo=echo, poolclass=NullPool)
        install_sqlite_pragmas(engine)
        return engine
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


DATABASE_URL = _normalize_db_url(config_settings.DATABASE_URL)

async_engine = build_engine(DATABASE_URL, echo=config_settings.DB_ECHO)

async_session = build_session_factory(async_engine)
