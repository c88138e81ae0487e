from sqlalchemy import Column, Text

from storefront.db import Base, BigId
from storefront.models.common import created_at_column


class User(Base):
    """
    A registered customer.

    Only the columns the persistence layer joins on live here; profile data
    belongs to the accounts service.
    """

    __tablename__ = "users"

    id = Column(BigId, primary_key=True, autoincrement=True)
    email = Column(Text, nullable=False, unique=True)
    first_name = Column(Text, nullable=True)
    last_name = Column(Text, nullable=True)
    created_at = created_at_column()

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r}>"
