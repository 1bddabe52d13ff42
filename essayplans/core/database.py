"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support
- Table definitions for users, subscriptions and essay submissions
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import (
    create_engine,
    MetaData,
    Table,
    Column,
    Integer,
    String,
    Date,
    DateTime,
    Boolean,
    Numeric,
    Text,
    Index,
    ForeignKey,
    CheckConstraint,
    select,
)
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.pool import QueuePool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import logging
import os

from essayplans.core.config import settings
from essayplans.core.errors import StoreUnavailable


logger = logging.getLogger("essayplans.database")

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

    connect_args = {}
    if url.startswith("sqlite"):
        # Writers wait for the lock holder instead of failing immediately
        connect_args = {
            "timeout": settings.SQLITE_BUSY_TIMEOUT_SECONDS,
            "check_same_thread": False,
        }

    if _engine is not None:
        _engine.dispose()

    # Create engine with connection pooling
    _engine = create_engine(
        url,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        connect_args=connect_args,
        echo=False,  # Set to True for SQL query logging
    )

    # Create session factory
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def dispose_engine() -> None:
    """Close pooled connections and forget the current engine."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


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

    Commits on success, rolls back on any error. Transport failures are
    surfaced as StoreUnavailable; nothing is retried here.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except (OperationalError, InterfaceError) as exc:
        session.rollback()
        logger.error("[database] store unavailable", extra={"error_code": "store_unavailable"})
        raise StoreUnavailable(f"Subscription store unavailable: {exc.orig!r}") from exc
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


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(select(1))
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


# Users table. subscription_id is a weak back-reference to the current
# subscription; it is cleared on cancel/expire and never authoritative.
users = Table(
    'app_users',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('display_name', Text, nullable=True),
    Column('role', String(20), nullable=False, server_default='student'),
    Column('status', String(50), nullable=False, server_default='active'),
    Column('subscription_id', Integer, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_users_created_at', 'created_at'),
    Index('idx_users_subscription_id', 'subscription_id'),
)

subscriptions = Table(
    'subscriptions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), ForeignKey('app_users.user_id', ondelete='CASCADE'), nullable=False),
    Column('plan_type', String(20), nullable=False),
    Column('status', String(20), nullable=False, server_default='active'),
    Column('start_date', Date, nullable=False),
    Column('end_date', Date, nullable=False),
    Column('price', Numeric(10, 2), nullable=False),
    Column('payment_method', String(50), nullable=True),
    Column('auto_renewal', Boolean, nullable=False, server_default='1'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    CheckConstraint("plan_type IN ('master', 'vip')", name='ck_subscriptions_plan_type'),
    CheckConstraint(
        "status IN ('active', 'inactive', 'cancelled', 'expired')",
        name='ck_subscriptions_status',
    ),
    CheckConstraint('end_date >= start_date', name='ck_subscriptions_dates'),
    Index('idx_subscriptions_user_id', 'user_id'),
    Index('idx_subscriptions_status', 'status'),
    Index('idx_subscriptions_plan_type', 'plan_type'),
    Index('idx_subscriptions_end_date', 'end_date'),
    Index('idx_subscriptions_created_at', 'created_at'),
    # Composite index for the date-aware active lookup: (user_id, status, end_date)
    Index('idx_subscriptions_user_status_end', 'user_id', 'status', 'end_date'),
)

# Essay submissions, counted per (week_number, year) bucket
essay_submissions = Table(
    'essay_submissions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), ForeignKey('app_users.user_id', ondelete='CASCADE'), nullable=False),
    Column('title', Text, nullable=False),
    Column('week_number', Integer, nullable=False),
    Column('year', Integer, nullable=False),
    Column('submitted_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_essay_submissions_user_bucket', 'user_id', 'year', 'week_number'),
)

# Confirmed payments linked to the subscription they activated or renewed
subscription_payments = Table(
    'subscription_payments',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), ForeignKey('app_users.user_id', ondelete='CASCADE'), nullable=False),
    Column('subscription_id', Integer, ForeignKey('subscriptions.id'), nullable=False),
    Column('payment_reference', String(100), nullable=True),
    Column('amount', Numeric(10, 2), nullable=False),
    Column('payment_method', String(50), nullable=True),
    Column('action', String(20), nullable=False),  # 'created' | 'renewed'
    Column('confirmed_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_subscription_payments_user', 'user_id'),
    Index('idx_subscription_payments_subscription', 'subscription_id'),
)
