from sqlalchemy import BigInteger, Integer
from sqlalchemy.orm import DeclarativeBase

from kujibox.db.metadata import metadata_obj

# BigInteger ids, with the Integer variant SQLite needs for autoincrement.
ID_TYPE = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    """Declarative base for the draw core tables (shared naming convention)."""

    metadata = metadata_obj
