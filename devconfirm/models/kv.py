"""Key-value entry table backing the durable store."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class KVEntry(SQLModel, table=True):
    __tablename__ = "kv_entries"
    __table_args__ = (UniqueConstraint("namespace", "key"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    namespace: str = Field(index=True)
    key: str = Field(index=True)
    value: str  # JSON
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
