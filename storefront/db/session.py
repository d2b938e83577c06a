"""Declarative base shared by the models and Alembic.

The application talks to the database through ``session_async`` only;
migrations build their own synchronous engine from ``DATABASE_URL``.
"""

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

# check constraints are named explicitly on each model
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)
