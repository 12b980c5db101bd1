"""
SQLAlchemy models and session management for the catalog store.

Items own their image assets and two parallel field sets: manual columns
curated by people and ``ai_*`` columns written by the pipeline. Every
analysis run is kept with its observations for audit.
"""

import logging
import os
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    create_engine,
)
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import func

from ..models import ExtractionMethod, RunStatus

logger = logging.getLogger(__name__)

Base = declarative_base()


class ItemRecord(Base):
    """Catalog item with manual and AI-derived attribute columns."""
    __tablename__ = "items"

    id = Column(String(64), primary_key=True)

    # Manual fields (never written by the pipeline)
    weight_carats = Column(Float)
    length_mm = Column(Float)
    width_mm = Column(Float)
    depth_mm = Column(Float)
    color = Column(String(100))
    cut = Column(String(100))
    clarity = Column(String(100))

    # AI-derived fields
    ai_weight_carats = Column(Float)
    ai_length_mm = Column(Float)
    ai_width_mm = Column(Float)
    ai_depth_mm = Column(Float)
    ai_color = Column(String(100))
    ai_cut = Column(String(100))
    ai_clarity = Column(String(100))
    ai_confidences = Column(JSON, default=dict)
    ai_extracted_at = Column(DateTime)

    primary_image_id = Column(String(64), nullable=True)
    analysis_status = Column(String(32), default=RunStatus.PENDING.value, index=True)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    images = relationship(
        "ImageAssetRecord",
        back_populates="item",
        order_by="ImageAssetRecord.ordinal",
        cascade="all, delete-orphan",
    )
    runs = relationship("AnalysisRunRecord", back_populates="item", cascade="all, delete-orphan")


class ImageAssetRecord(Base):
    """Stored photo of an item. The pipeline only annotates it."""
    __tablename__ = "image_assets"

    id = Column(String(64), primary_key=True)
    item_id = Column(String(64), ForeignKey("items.id"), nullable=False, index=True)
    location = Column(String(1000))
    ordinal = Column(Integer, nullable=False, default=0)
    is_primary = Column(Boolean, default=False)

    ai_score = Column(Float)
    ai_reasoning = Column(Text)

    item = relationship("ItemRecord", back_populates="images")


class AnalysisRunRecord(Base):
    """One pipeline execution for one item."""
    __tablename__ = "analysis_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    item_id = Column(String(64), ForeignKey("items.id"), nullable=False)
    model = Column(String(100), nullable=False)
    status = Column(Enum(RunStatus), nullable=False, index=True)
    failure_reason = Column(Text)

    raw_response = Column(Text)
    normalized = Column(JSON)
    fields = Column(JSON, default=dict)
    written_fields = Column(JSON, default=list)
    skipped_fields = Column(JSON, default=dict)
    primary_image = Column(JSON)
    validation_issues = Column(JSON, default=list)
    validation_warnings = Column(JSON, default=list)

    input_tokens = Column(Integer, default=0)
    output_tokens = Column(Integer, default=0)
    cost_usd = Column(Float, default=0.0)
    duration_ms = Column(Integer, default=0)
    created_at = Column(DateTime, default=func.now())

    item = relationship("ItemRecord", back_populates="runs")
    observations = relationship(
        "MeasurementObservationRecord", back_populates="run", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_run_item_created", "item_id", "created_at"),
    )


class MeasurementObservationRecord(Base):
    """One observation considered by a run."""
    __tablename__ = "measurement_observations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(Integer, ForeignKey("analysis_runs.id"), nullable=False, index=True)
    attribute = Column(String(32), nullable=False)
    value = Column(JSON)
    confidence = Column(Float, nullable=False)
    method = Column(Enum(ExtractionMethod), nullable=False)
    image_index = Column(Integer)
    unit = Column(String(32))
    source = Column(String(200))

    run = relationship("AnalysisRunRecord", back_populates="observations")


class Database:
    """
    Engine and session factory for the catalog store.

    SQLite connections are shared across worker threads, so sessions against
    SQLite are serialized with a lock. Other backends rely on their own
    transaction isolation.
    """

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self._is_sqlite = database_url.startswith("sqlite")
        self._lock: Optional[threading.RLock] = threading.RLock() if self._is_sqlite else None

        kwargs = {"echo": echo}
        if self._is_sqlite:
            kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
            elif ":///" in database_url:
                db_dir = os.path.dirname(database_url.split("///", 1)[1].split("?")[0])
                if db_dir and not os.path.exists(db_dir):
                    os.makedirs(db_dir, exist_ok=True)
                    logger.info(f"Created database directory: {db_dir}")
        else:
            kwargs["pool_pre_ping"] = True

        self.engine = create_engine(database_url, **kwargs)
        self._session_factory = sessionmaker(
            bind=self.engine,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info(f"Database initialized: {database_url.split('@')[-1].split('?')[0]}")

    def init_db(self) -> None:
        """Create all tables if they don't exist."""
        Base.metadata.create_all(self.engine)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Session that commits on success and rolls back on error."""
        if self._lock is not None:
            self._lock.acquire()
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
            if self._lock is not None:
                self._lock.release()

    def close(self) -> None:
        self.engine.dispose()

    def __repr__(self) -> str:
        return f"Database(url={self.database_url.split('@')[-1]})"
