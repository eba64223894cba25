"""SQLModel data models.

Only two tables exist. `KVEntry` backs the generic key-value store every
domain record lives in; `Credential` belongs to the local identity gateway.
Domain shapes (profiles, scholarship requests, contributions) are pydantic
models in `schemas.py` and are stored as JSON documents.
"""

from typing import Any
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON
from datetime import datetime, timezone


class KVEntry(SQLModel, table=True):
    """One key-value pair. `value` is any JSON document or scalar."""
    __tablename__ = "kv_store"

    key: str = Field(primary_key=True)
    value: Any = Field(default=None, sa_column=Column(JSON))


class Credential(SQLModel, table=True):
    """A login handle known to the identity gateway.

    Fields:
    - `id`: opaque, stable user identifier shared with the profile record
    - `handle`: unique login name (email or synthesized student handle)
    - `password_hash`: hashed secret (never store plaintext)
    """
    id: str = Field(primary_key=True)
    handle: str = Field(index=True, nullable=False, unique=True)
    role: str
    password_hash: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
