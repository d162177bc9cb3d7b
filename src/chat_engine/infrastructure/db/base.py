from __future__ import annotations

from sqlalchemy import BigInteger, Integer
from sqlalchemy.orm import DeclarativeBase

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
AutoIncrementBigInt = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    pass
