"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support (SQLite, single shared connection)
- Table definitions for tents, quests, participation, progress and job runs
"""
from typing import Optional
from contextlib import contextmanager
import logging
import os

from sqlalchemy import (
    create_engine, MetaData, Table, Column, Integer, Float, String, DateTime, Boolean, JSON, Text,
    Index, ForeignKey, UniqueConstraint,
)
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func

from tentquest.core.config import settings

logger = logging.getLogger("tentquest")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if url.startswith("sqlite"):
        # One shared connection so in-memory databases survive across sessions and threads
        _engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            echo=False,  # Set to True for SQL query logging
        )

    # Create session factory
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def drop_all_tables():
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    engine = get_engine()
    metadata.drop_all(bind=engine)


def reset_database():
    """
    Reset the database by dropping and recreating all tables.

    WARNING: This is destructive! Only use in tests.
    """
    drop_all_tables()
    create_all_tables()


# Campaigns ("tents")
tents = Table(
    'tents',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('event_id', String(100), nullable=False, unique=True),  # provider campaign id
    Column('tent_name', String(255), nullable=False),
    Column('title', Text, nullable=False),
    Column('description', Text, nullable=True),
    Column('tent_type', String(50), nullable=True, index=True),
    Column('state', String(20), nullable=False, server_default='DRAFT'),
    Column('start_time', DateTime(timezone=True), nullable=True),
    Column('end_time', DateTime(timezone=True), nullable=True),
    Column('public_link', Text, nullable=True),
    Column('banner_url', Text, nullable=True),
    Column('reward_title', Text, nullable=True),
    Column('reward_subtitle', Text, nullable=True),
    Column('summary', JSON, nullable=False, default=dict),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
)

# Tasks ("quests")
quests = Table(
    'quests',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('tent_id', Integer, ForeignKey('tents.id', ondelete='CASCADE'), nullable=False, index=True),
    Column('task_id', String(100), nullable=False, unique=True),  # provider task id
    Column('title', Text, nullable=False),
    Column('description', Text, nullable=True),
    Column('order', Integer, nullable=False, default=1),
    Column('xp', Integer, nullable=False, default=0),
    Column('points', Integer, nullable=False, default=0),
    Column('task_type', String(50), nullable=True),
    Column('parent_id', String(100), nullable=True, index=True),  # set only for quiz sub-questions
    Column('participant_count', Integer, nullable=False, default=0),
    Column('guard_config', JSON, nullable=True),
    Column('info', JSON, nullable=True),
    Column('dynamic_prerequisites', JSON, nullable=False, default=list),
    Column('prerequisite_condition', String(3), nullable=False, default='AND'),
    Column('custom_prerequisites', JSON, nullable=False, default=list),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    Index('idx_quests_tent_order', 'tent_id', 'order'),
)

# One row per (user, tent event) with the merged task participation list
user_task_participations = Table(
    'user_task_participations',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('event_id', String(100), nullable=False, index=True),
    Column('tent_id', Integer, ForeignKey('tents.id', ondelete='SET NULL'), nullable=True),
    Column('participations', JSON, nullable=False, default=list),
    Column('total_points', Integer, nullable=False, default=0),
    Column('total_xp', Integer, nullable=False, default=0),
    Column('completed_tasks_count', Integer, nullable=False, default=0),
    Column('last_updated', DateTime(timezone=True), nullable=False),
    UniqueConstraint('user_id', 'event_id', name='uq_user_task_participations_user_event'),
)

# Per-user XP / level / safety meter state
user_progress = Table(
    'user_progress',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('current_xp', Integer, nullable=False, default=0),
    Column('current_level', Integer, nullable=False, default=1),
    Column('total_lifetime_xp', Integer, nullable=False, default=0),
    Column('xp_meter_visible', Boolean, nullable=False, default=False),
    Column('safety_meter_visible', Boolean, nullable=False, default=False, index=True),
    Column('current_stage', Integer, nullable=False, default=3),
    Column('last_login_date', DateTime(timezone=True), nullable=True),
    Column('last_quest_completion_date', DateTime(timezone=True), nullable=True),
    Column('last_social_task_date', DateTime(timezone=True), nullable=True),
    Column('last_educational_task_date', DateTime(timezone=True), nullable=True),
    Column('last_safety_check', DateTime(timezone=True), nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    # Decay job candidate selection: (safety_meter_visible, last_safety_check)
    Index('idx_user_progress_safety_check', 'safety_meter_visible', 'last_safety_check'),
)

# Static per-level reward table
level_rewards = Table(
    'level_rewards',
    metadata,
    Column('level', Integer, primary_key=True),
    Column('reward_type', String(20), nullable=False),
    Column('mystery_box_count', Integer, nullable=False, default=0),
    Column('multiplier_value', Float, nullable=False, default=1.0),
    Column('description', Text, nullable=False, default=''),
    Column('is_active', Boolean, nullable=False, default=True, index=True),
)

# Background job run log
job_runs = Table(
    'job_runs',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('job_name', String(100), nullable=False, index=True),
    Column('trigger', String(20), nullable=False),  # 'scheduled' | 'manual'
    Column('started_at', DateTime(timezone=True), nullable=False),
    Column('finished_at', DateTime(timezone=True), nullable=True),
    Column('status', String(20), nullable=False),
    Column('stats', JSON, nullable=True),
    Index('idx_job_runs_name_started', 'job_name', 'started_at'),
)
