from sqlalchemy import Column, DateTime, Text

from storefront.db import Base, BigId
from storefront.models.common import utcnow


class SchemaMigration(Base):
    """Bookkeeping row for each applied migration."""

    __tablename__ = "schema_migrations"

    id = Column(BigId, primary_key=True, autoincrement=True)
    version = Column(Text, nullable=False, unique=True)
    name = Column(Text, nullable=False)
    applied_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<SchemaMigration {self.version} {self.name!r}>"
