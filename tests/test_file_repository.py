"""
FileRepository tests
"""

import pytest

from storefront.core.exceptions import FileNotFoundInStoreError, ValidationError
from storefront.models import FileUpload, UploadType
from storefront.repositories import FileRepository


@pytest.fixture
def repo(session_factory):
    return FileRepository(session_factory)


def _upload(key, **kwargs):
    kwargs.setdefault("file_name", key.rsplit("/", 1)[-1])
    kwargs.setdefault("original_name", "photo.jpg")
    kwargs.setdefault("file_size", 2048)
    return FileUpload(object_key=key, **kwargs)


class TestFileRepository:

    @pytest.mark.db
    def test_create_assigns_string_id(self, repo, user):
        upload = repo.create_file_upload(_upload("users/1/avatar.jpg", uploaded_by=user.id))

        assert isinstance(upload.id, str) and len(upload.id) == 32
        assert upload.upload_type == UploadType.USER.value
        assert repo.get_file_upload_by_id(upload.id).object_key == "users/1/avatar.jpg"

    @pytest.mark.db
    def test_object_key_required(self, repo):
        with pytest.raises(ValidationError):
            repo.create_file_upload(_upload(""))

    @pytest.mark.db
    def test_lookup_by_key(self, repo):
        repo.create_file_upload(_upload("public/banner.png", upload_type=UploadType.PUBLIC.value))

        assert repo.file_exists("public/banner.png")
        assert not repo.file_exists("public/missing.png")
        assert repo.get_file_upload_by_object_key("public/banner.png").upload_type == "public"
        with pytest.raises(FileNotFoundInStoreError):
            repo.get_file_upload_by_object_key("public/missing.png")

    @pytest.mark.db
    def test_by_user_and_counts(self, repo, make_user):
        owner, other = make_user(), make_user()
        repo.create_file_upload(_upload("u/a.jpg", uploaded_by=owner.id))
        repo.create_file_upload(_upload("u/b.jpg", uploaded_by=owner.id))
        repo.create_file_upload(_upload("u/c.jpg", uploaded_by=other.id))

        assert len(repo.get_file_uploads_by_user(owner.id)) == 2
        assert repo.get_file_count_by_user(owner.id) == 2
        assert repo.get_file_count_by_type(UploadType.USER.value) == 3

    @pytest.mark.db
    def test_by_type_and_category(self, repo):
        repo.create_file_upload(_upload("a/1.png", upload_type="admin", category="banners"))
        repo.create_file_upload(_upload("a/2.pdf", upload_type="admin", category="invoices"))

        assert len(repo.get_file_uploads_by_type_and_category("admin")) == 2
        [banner] = repo.get_file_uploads_by_type_and_category("admin", "banners")
        assert banner.object_key == "a/1.png"

    @pytest.mark.db
    def test_update_and_delete(self, repo):
        upload = repo.create_file_upload(_upload("tmp/x.bin"))
        upload.category = "archive"

        assert repo.update_file_upload(upload).category == "archive"
        repo.delete_file_upload(upload.id)
        with pytest.raises(FileNotFoundInStoreError):
            repo.get_file_upload_by_id(upload.id)
