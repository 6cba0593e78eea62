# app/database.py
import logging
from typing import Generator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine, select

# Import configuration and models
from app.config import DATABASE_URL, DEFAULT_ADMIN_EMAIL, DEFAULT_ADMIN_PASSWORD
from app.models import Box, Freezer, Rack, User, UserRole
from app.utils.security import get_password_hash

logger = logging.getLogger(__name__)

def build_engine(url: str = DATABASE_URL) -> Engine:
    """
    Creates the SQLAlchemy engine.
    SQLite gets a StaticPool so a single connection is shared across threads;
    other backends use the default pool.
    """
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool
        )
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_engine(url, pool_pre_ping=True)

def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """SQLite ignores ON DELETE clauses unless foreign keys are switched on per connection."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()

engine = build_engine()

def seed_defaults(session: Session):
    """
    Seeds a brand new database with the default admin account and one
    sample storage location so the inventory is usable immediately.
    """
    if not session.exec(select(User)).first():
        session.add(User(
            email=DEFAULT_ADMIN_EMAIL,
            name="admin",
            hashed_password=get_password_hash(DEFAULT_ADMIN_PASSWORD),
            role=UserRole.ADMIN
        ))
        logger.warning(f"Created default admin account {DEFAULT_ADMIN_EMAIL}; change its password")

    # Check if a Freezer already exists to avoid duplicate seeding
    if not session.exec(select(Freezer)).first():
        freezer = Freezer(name="Freezer 1", location="Lab A", temperature="-80°C", capacity=5, remark="Main freezer")
        rack = Rack(name="Rack A", capacity=10, freezer=freezer)
        session.add(Box(name="Box 1", rows=10, cols=10, rack=rack))
    session.commit()

def init_db(bind: Engine = engine):
    """Ensures the database tables exist and are seeded."""
    # Create all tables defined in models.py
    SQLModel.metadata.create_all(bind)

    with Session(bind) as session:
        seed_defaults(session)

def get_db_session() -> Generator[Session, None, None]:
    """Yields a database session scoped to a single request."""
    with Session(engine) as session:
        yield session
