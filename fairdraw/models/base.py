from sqlalchemy import BigInteger, Integer
from sqlalchemy.orm import DeclarativeBase

# BigInteger ids everywhere except SQLite, where only INTEGER autoincrements.
ID_TYPE = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    pass
