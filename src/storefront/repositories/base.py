import copy
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Callable, Dict, Generic, List, Optional, Type, TypeVar

from sqlalchemy import delete, func, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from storefront.core.exceptions import BaseAPIException, DatabaseError, NotFoundError
from storefront.db import get_session_factory

T = TypeVar('T')
R = TypeVar('R')

logger = logging.getLogger(__name__)


class BaseRepository(ABC, Generic[T]):
    """
    Abstract base repository providing common database operations.
    Implements Repository Pattern for clean separation of data access logic.

    A repository either owns its sessions (one short session per call,
    committed on success) or is bound to a caller's session, in which case
    it never commits and the owner of the session decides. transaction()
    hands out such a bound copy so several calls share one transaction.
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        session: Optional[Session] = None,
    ):
        self._session_factory = session_factory
        self._session = session

    @property
    @abstractmethod
    def model(self) -> Type[T]:
        """Mapped class handled by this repository"""
        pass

    @property
    @abstractmethod
    def not_found_error(self) -> Type[NotFoundError]:
        """Sentinel raised when a row is missing"""
        pass

    @property
    def session_factory(self) -> sessionmaker:
        return self._session_factory or get_session_factory()

    @contextmanager
    def get_db_session(self, operation: str = "SELECT"):
        """Session context manager with error handling"""
        if self._session is not None:
            try:
                yield self._session
            except IntegrityError as e:
                logger.error(f"Integrity constraint violation: {str(e)}")
                raise DatabaseError(f"Data integrity violation: {str(e)}", "WRITE") from e
            except SQLAlchemyError as e:
                logger.error(f"Database error during {operation}: {str(e)}")
                raise DatabaseError(f"Database operation failed: {str(e)}", operation) from e
            return

        session = self.session_factory()
        try:
            yield session
            session.commit()
        except BaseAPIException:
            session.rollback()
            raise
        except IntegrityError as e:
            session.rollback()
            logger.error(f"Integrity constraint violation: {str(e)}")
            raise DatabaseError(f"Data integrity violation: {str(e)}", "WRITE") from e
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database error during {operation}: {str(e)}")
            raise DatabaseError(f"Database operation failed: {str(e)}", operation) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def transaction(self):
        """
        Yield a copy of this repository bound to one session.

        Everything done through the copy commits together when the block
        exits and rolls back if it raises. Nested use reuses the outer
        transaction.
        """
        if self._session is not None:
            yield self
            return

        with self.get_db_session("WRITE") as session:
            yield self.bind(session)

    def bind(self, session: Session):
        """Copy of this repository that works inside ``session``"""
        bound = copy.copy(self)
        bound._session = session
        return bound

    def with_transaction(self, fn: Callable[[Any], R]) -> R:
        """Run ``fn(tx_repo)`` in one transaction and return its result"""
        with self.transaction() as tx:
            return fn(tx)

    # ------------------------------------------------------------------
    # Generic CRUD helpers
    # ------------------------------------------------------------------

    def get_by_id(self, entity_id: Any) -> T:
        """Get entity by ID"""
        with self.get_db_session() as session:
            entity = session.get(self.model, entity_id)
            if entity is None:
                raise self.not_found_error(resource_id=entity_id)
            return entity

    def exists(self, entity_id: Any) -> bool:
        """Check if entity exists by ID"""
        with self.get_db_session() as session:
            stmt = select(self.model.id).where(self.model.id == entity_id)
            return session.execute(stmt).first() is not None

    def _add(self, entity: T) -> T:
        with self.get_db_session("INSERT") as session:
            session.add(entity)
            session.flush()
            logger.info(f"Created {self.model.__name__} id={entity.id}")
            return entity

    def _add_all(self, entities: List[T], chunk_size: int = 100) -> int:
        """Insert in chunks inside one transaction"""
        if not entities:
            return 0
        with self.get_db_session("BATCH") as session:
            for start in range(0, len(entities), chunk_size):
                session.add_all(entities[start:start + chunk_size])
                session.flush()
        logger.info(f"Created {len(entities)} {self.model.__name__} rows")
        return len(entities)

    def _save(self, entity: T) -> T:
        """Persist changes to an existing row; missing id -> not found"""
        with self.get_db_session("WRITE") as session:
            if entity.id is None or session.get(self.model, entity.id) is None:
                raise self.not_found_error(resource_id=entity.id)
            merged = session.merge(entity)
            session.flush()
            logger.info(f"Updated {self.model.__name__} id={merged.id}")
            return merged

    def _delete_by_id(self, entity_id: Any) -> None:
        with self.get_db_session("DELETE") as session:
            result = session.execute(delete(self.model).where(self.model.id == entity_id))
            if result.rowcount == 0:
                raise self.not_found_error(resource_id=entity_id)
        logger.info(f"Deleted {self.model.__name__} id={entity_id}")

    def _all(self, stmt) -> List[Any]:
        with self.get_db_session() as session:
            return list(session.scalars(stmt).unique().all())

    def _first(self, stmt, not_found_id: Any = None) -> Any:
        """First row of ``stmt`` or the repository's not-found error"""
        with self.get_db_session() as session:
            entity = session.scalars(stmt).unique().first()
            if entity is None:
                raise self.not_found_error(resource_id=not_found_id)
            return entity

    def _count(self, stmt) -> int:
        count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
        with self.get_db_session() as session:
            return session.execute(count_stmt).scalar() or 0

    @staticmethod
    def _paginate(stmt, limit: Optional[int] = None, offset: Optional[int] = None):
        """Apply limit/offset; zero or negative values are ignored"""
        if limit and limit > 0:
            stmt = stmt.limit(limit)
        if offset and offset > 0:
            stmt = stmt.offset(offset)
        return stmt

    @staticmethod
    def _order(stmt, column, descending: bool = True):
        return stmt.order_by(column.desc() if descending else column.asc())

    # ------------------------------------------------------------------
    # Raw SQL, for the arithmetic statements that read better as text
    # ------------------------------------------------------------------

    def execute_command(self, command: str, params: Optional[Dict[str, Any]] = None) -> int:
        """
        Execute INSERT/UPDATE/DELETE command

        Returns:
            Number of affected rows
        """
        with self.get_db_session("WRITE") as session:
            result = session.execute(text(command), params or {})
            return result.rowcount

    def execute_scalar(self, query: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Execute query returning single scalar value (COUNT, SUM, etc.)
        """
        with self.get_db_session() as session:
            return session.execute(text(query), params or {}).scalar()
