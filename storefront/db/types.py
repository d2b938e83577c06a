import uuid

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.types import TypeDecorator


class GUID(TypeDecorator):
    """Portable UUID type.

    - PostgreSQL: native UUID (as_uuid=True)
    - SQLite/others: String(36)
    """

    impl = String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PGUUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return str(value) if dialect.name != "postgresql" else value
        normalized = uuid.UUID(str(value))
        return str(normalized) if dialect.name != "postgresql" else normalized

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        return uuid.UUID(str(value))
