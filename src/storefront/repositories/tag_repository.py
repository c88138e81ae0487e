import logging
from typing import List

from sqlalchemy import delete, insert, select

from storefront.core.exceptions import TagNotFoundError, ValidationError
from storefront.models.product import Product, Tag, product_tags
from storefront.repositories.base import BaseRepository
from storefront.utils.validators import ValidationUtils

logger = logging.getLogger(__name__)


class TagRepository(BaseRepository[Tag]):
    model = Tag
    not_found_error = TagNotFoundError

    def create(self, tag: Tag) -> Tag:
        tag.name = tag.name.strip()
        if not tag.slug:
            tag.slug = ValidationUtils.slugify(tag.name)
        return self._add(tag)

    def get_by_name(self, name: str) -> Tag:
        return self._first(select(Tag).where(Tag.name == name), name)

    def get_by_slug(self, slug: str) -> Tag:
        return self._first(select(Tag).where(Tag.slug == slug), slug)

    def update(self, tag: Tag) -> Tag:
        return self._save(tag)

    def delete(self, tag_id: int) -> None:
        self._delete_by_id(tag_id)

    def list(self, limit: int = 50, offset: int = 0) -> List[Tag]:
        stmt = select(Tag).order_by(Tag.name)
        return self._all(self._paginate(stmt, limit, offset))

    def exists_by_name(self, name: str) -> bool:
        with self.get_db_session() as session:
            return session.execute(select(Tag.id).where(Tag.name == name)).first() is not None

    def exists_by_slug(self, slug: str) -> bool:
        with self.get_db_session() as session:
            return session.execute(select(Tag.id).where(Tag.slug == slug)).first() is not None

    def find_or_create(self, name: str) -> Tag:
        """Tag named ``name`` (trimmed), created on first use"""
        name = name.strip()
        if not name:
            raise ValidationError("Tag name is required", [{"field": "name", "message": "required"}])
        with self.get_db_session("WRITE") as session:
            tag = session.scalars(select(Tag).where(Tag.name == name)).first()
            if tag is None:
                tag = Tag(name=name, slug=ValidationUtils.slugify(name))
                session.add(tag)
                session.flush()
                logger.info(f"Created tag {tag.slug!r} id={tag.id}")
            return tag

    # ------------------------------------------------------------------
    # Product associations
    # ------------------------------------------------------------------

    def add_tag_to_product(self, product_id: int, tag_id: int) -> None:
        with self.get_db_session("WRITE") as session:
            linked = session.execute(
                select(product_tags.c.tag_id).where(
                    product_tags.c.product_id == product_id, product_tags.c.tag_id == tag_id
                )
            ).first()
            if linked is None:
                session.execute(insert(product_tags).values(product_id=product_id, tag_id=tag_id))

    def remove_tag_from_product(self, product_id: int, tag_id: int) -> None:
        with self.get_db_session("DELETE") as session:
            session.execute(
                delete(product_tags).where(
                    product_tags.c.product_id == product_id, product_tags.c.tag_id == tag_id
                )
            )

    def get_tags_for_product(self, product_id: int) -> List[Tag]:
        stmt = (
            select(Tag)
            .join(product_tags, product_tags.c.tag_id == Tag.id)
            .where(product_tags.c.product_id == product_id)
            .order_by(Tag.name)
        )
        return self._all(stmt)

    def get_products_for_tag(self, tag_id: int, limit: int = 20, offset: int = 0) -> List[Product]:
        stmt = (
            select(Product)
            .join(product_tags, product_tags.c.product_id == Product.id)
            .where(product_tags.c.tag_id == tag_id)
            .order_by(Product.name)
        )
        return self._all(self._paginate(stmt, limit, offset))
