import uuid
from enum import Enum

from sqlalchemy import BigInteger, CheckConstraint, Column, ForeignKey, Text

from storefront.db import Base
from storefront.models.common import created_at_column, enum_check, updated_at_column


class UploadType(str, Enum):
    ADMIN = "admin"
    USER = "user"
    PUBLIC = "public"


def new_file_id() -> str:
    return uuid.uuid4().hex


class FileUpload(Base):
    """
    Metadata for an object stored in the blob store.

    The bytes themselves live under object_key in object storage; this row
    is the index used to list and authorise them. Ids are opaque strings.
    """

    __tablename__ = "file_uploads"

    id = Column(Text, primary_key=True, default=new_file_id)
    file_name = Column(Text, nullable=False)
    original_name = Column(Text, nullable=False)
    object_key = Column(Text, nullable=False, unique=True)
    file_size = Column(BigInteger, nullable=False, default=0)
    content_type = Column(Text, nullable=True)
    url = Column(Text, nullable=True)
    uploaded_by = Column(BigInteger, ForeignKey("users.id"), nullable=True)
    upload_type = Column(Text, nullable=False, default=UploadType.USER.value)
    category = Column(Text, nullable=True)
    created_at = created_at_column()
    updated_at = updated_at_column()

    __table_args__ = (
        enum_check("upload_type", UploadType, "ck_file_upload_type"),
        CheckConstraint("file_size >= 0", name="ck_file_upload_size"),
    )

    def __repr__(self) -> str:
        return f"<FileUpload id={self.id!r} key={self.object_key!r}>"
