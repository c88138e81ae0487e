import logging
from typing import List, Optional

from sqlalchemy import select

from storefront.core.exceptions import FileNotFoundInStoreError, ValidationError
from storefront.models.file_upload import FileUpload, UploadType
from storefront.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class FileRepository(BaseRepository[FileUpload]):
    """Index of uploaded objects. Ids are strings, not integers."""

    model = FileUpload
    not_found_error = FileNotFoundInStoreError

    def create_file_upload(self, upload: FileUpload) -> FileUpload:
        if not upload.object_key:
            raise ValidationError(
                "Object key is required", [{"field": "object_key", "message": "required"}]
            )
        if upload.upload_type is None:
            upload.upload_type = UploadType.USER.value
        return self._add(upload)

    def get_file_upload_by_id(self, file_id: str) -> FileUpload:
        return self.get_by_id(file_id)

    def get_file_upload_by_object_key(self, object_key: str) -> FileUpload:
        return self._first(select(FileUpload).where(FileUpload.object_key == object_key), object_key)

    def get_file_uploads_by_user(self, user_id: int, limit: int = 20, offset: int = 0) -> List[FileUpload]:
        stmt = (
            select(FileUpload)
            .where(FileUpload.uploaded_by == user_id)
            .order_by(FileUpload.created_at.desc(), FileUpload.id)
        )
        return self._all(self._paginate(stmt, limit, offset))

    def get_file_uploads_by_type_and_category(
        self,
        upload_type: str,
        category: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[FileUpload]:
        stmt = select(FileUpload).where(FileUpload.upload_type == upload_type)
        if category:
            stmt = stmt.where(FileUpload.category == category)
        stmt = stmt.order_by(FileUpload.created_at.desc(), FileUpload.id)
        return self._all(self._paginate(stmt, limit, offset))

    def update_file_upload(self, upload: FileUpload) -> FileUpload:
        return self._save(upload)

    def delete_file_upload(self, file_id: str) -> None:
        self._delete_by_id(file_id)

    def file_exists(self, object_key: str) -> bool:
        stmt = select(FileUpload.id).where(FileUpload.object_key == object_key)
        with self.get_db_session() as session:
            return session.execute(stmt).first() is not None

    def get_file_count_by_user(self, user_id: int) -> int:
        return self._count(select(FileUpload).where(FileUpload.uploaded_by == user_id))

    def get_file_count_by_type(self, upload_type: str) -> int:
        return self._count(select(FileUpload).where(FileUpload.upload_type == upload_type))
