"""Per-domain report persistence.

Reports are keyed by domain name. Each analyzer owns one JSON column; an
upsert only touches the columns present in the update so that scans running
different tool subsets against the same domain never erase each other's data.
"""

from __future__ import annotations

import logging
import os
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, DateTime, Integer, String, create_engine, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

DEFAULT_DB_PATH = "webtools.db"

SLOT_COLUMNS = {
    "redirectData": "redirect_data",
    "brokenLinksData": "broken_links_data",
    "securityData": "security_data",
    "robotsData": "robots_data",
    "aiData": "ai_data",
    "whoisData": "whois_data",
}

logger = logging.getLogger("webtools.storage")
logger.addHandler(logging.NullHandler())


class Base(DeclarativeBase):
    pass


class Domain(Base):
    __tablename__ = "domains"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    domain: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    redirect_data: Mapped[Optional[Any]] = mapped_column(JSON(none_as_null=True))
    broken_links_data: Mapped[Optional[Any]] = mapped_column(JSON(none_as_null=True))
    security_data: Mapped[Optional[Any]] = mapped_column(JSON(none_as_null=True))
    robots_data: Mapped[Optional[Any]] = mapped_column(JSON(none_as_null=True))
    ai_data: Mapped[Optional[Any]] = mapped_column(JSON(none_as_null=True))
    whois_data: Mapped[Optional[Any]] = mapped_column(JSON(none_as_null=True))

    last_scanned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    def to_dict(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {"id": self.id, "domain": self.domain}
        for field_name, column in SLOT_COLUMNS.items():
            record[field_name] = getattr(self, column)
        record["lastScannedAt"] = _isoformat(self.last_scanned_at)
        record["createdAt"] = _isoformat(self.created_at)
        return record


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    # SQLite hands datetimes back without tzinfo; they are stored as UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class DomainStorage(ABC):
    @abstractmethod
    def get_domain(self, domain: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def get_recent_domains(self, limit: int = 10) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def upsert_domain(self, update: Dict[str, Any]) -> Dict[str, Any]:
        """Insert or merge ``update`` (must carry ``domain``); return the full row."""
        ...


class SQLAlchemyStorage(DomainStorage):
    def __init__(self, db_path: Optional[str] = None) -> None:
        self.db_path = str(db_path or os.getenv("WEBTOOLS_DB_PATH", DEFAULT_DB_PATH))
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None
        self._init_lock = threading.Lock()

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            with self._init_lock:
                if self._session_factory is None:
                    engine = create_engine(
                        f"sqlite:///{self.db_path}",
                        connect_args={"check_same_thread": False, "timeout": 30},
                    )
                    Base.metadata.create_all(engine)
                    self._engine = engine
                    self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        return self._session_factory

    def get_domain(self, domain: str) -> Optional[Dict[str, Any]]:
        with self.session_factory() as session:
            row = session.execute(select(Domain).where(Domain.domain == domain)).scalar_one_or_none()
            return row.to_dict() if row else None

    def get_recent_domains(self, limit: int = 10) -> List[Dict[str, Any]]:
        with self.session_factory() as session:
            rows = session.execute(
                select(Domain).order_by(Domain.last_scanned_at.desc(), Domain.id.desc()).limit(limit)
            ).scalars()
            return [row.to_dict() for row in rows]

    def upsert_domain(self, update: Dict[str, Any]) -> Dict[str, Any]:
        domain = update.get("domain")
        if not domain:
            raise ValueError("upsert_domain requires a domain")

        provided = [name for name in SLOT_COLUMNS if name in update]
        values: Dict[str, Any] = {SLOT_COLUMNS[name]: update[name] for name in provided}
        now = datetime.now(timezone.utc)

        stmt = sqlite_insert(Domain).values(domain=domain, last_scanned_at=now, created_at=now, **values)
        set_ = {column: stmt.excluded[column] for column in values}
        set_["last_scanned_at"] = stmt.excluded.last_scanned_at
        stmt = stmt.on_conflict_do_update(index_elements=["domain"], set_=set_)

        with self.session_factory() as session:
            session.execute(stmt)
            session.commit()
            row = session.execute(select(Domain).where(Domain.domain == domain)).scalar_one()
            record = row.to_dict()
        logger.debug("Upserted %s (%s)", domain, ", ".join(provided) or "timestamp only")
        return record
