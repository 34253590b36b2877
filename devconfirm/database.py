"""Database connection and initialization."""

from pathlib import Path

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from devconfirm.config import settings

# Import all models so SQLModel registers them
import devconfirm.models  # noqa: F401


def create_db_engine(db_path: Path, echo: bool = False) -> Engine:
    return create_engine(
        f"sqlite:///{db_path}",
        echo=echo,
        connect_args={"check_same_thread": False},
    )


engine = create_db_engine(settings.db_path, echo=settings.debug)


def init_db(db_engine: Engine = engine) -> None:
    """Create all tables and enable WAL mode."""
    SQLModel.metadata.create_all(db_engine)

    # Enable WAL mode for better concurrent read performance
    with db_engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA journal_mode=WAL")
        conn.exec_driver_sql("PRAGMA synchronous=NORMAL")
        conn.commit()
