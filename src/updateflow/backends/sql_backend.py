# backends/sql_backend.py
from __future__ import annotations

from typing import Any, Optional, Tuple

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from ..errors import CacheBackingError


class Base(DeclarativeBase):
    pass


class CacheRow(Base):
    __tablename__ = "cache_entries"
    key: Mapped[str] = mapped_column(sa.Text, primary_key=True)
    value: Mapped[Any] = mapped_column(sa.JSON, nullable=True)
    created_at: Mapped[float] = mapped_column(sa.Float, nullable=False)


def _make_engine(url: str) -> sa.Engine:
    if url in ("sqlite://", "sqlite:///:memory:"):
        # one shared connection, otherwise every thread sees its own empty db
        return sa.create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return sa.create_engine(url, pool_pre_ping=True)


class SqlCacheBacking:
    """Cache backing stored in a `cache_entries` table via SQLAlchemy."""

    def __init__(self, url: str = "sqlite:///.updateflow/cache.db"):
        self.url = url
        try:
            self.engine = _make_engine(url)
            # Creates the table if it doesn't exist.
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise CacheBackingError(f"could not open cache database {url}: {e}") from e
        self._session = sessionmaker(self.engine, expire_on_commit=False)

    def load(self, key: str) -> Optional[Tuple[Any, float]]:
        try:
            with self._session() as s:
                row = s.get(CacheRow, key)
                if row is None:
                    return None
                return row.value, row.created_at
        except SQLAlchemyError as e:
            raise CacheBackingError(f"SQL load failed for key={key!r}: {e}") from e

    def store(self, key: str, value: Any, timestamp: float) -> None:
        try:
            with self._session() as s, s.begin():
                s.merge(CacheRow(key=key, value=value, created_at=timestamp))
        except (SQLAlchemyError, TypeError, ValueError) as e:
            raise CacheBackingError(f"SQL store failed for key={key!r}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            with self._session() as s, s.begin():
                s.execute(sa.delete(CacheRow).where(CacheRow.key == key))
        except SQLAlchemyError as e:
            raise CacheBackingError(f"SQL delete failed for key={key!r}: {e}") from e

    def clear(self) -> None:
        try:
            with self._session() as s, s.begin():
                s.execute(sa.delete(CacheRow))
        except SQLAlchemyError as e:
            raise CacheBackingError(f"SQL clear failed: {e}") from e

    def count(self) -> int:
        with self._session() as s:
            return s.execute(sa.select(sa.func.count()).select_from(CacheRow)).scalar_one()
