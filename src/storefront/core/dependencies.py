from typing import Any, Callable, Dict, Optional, Type, TypeVar

from sqlalchemy.orm import sessionmaker

T = TypeVar('T')


class RepositoryRegistry:
    """Lazily built, shared repository instances keyed by class"""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory
        self._instances: Dict[str, Any] = {}
        self._factories: Dict[str, Callable[[], Any]] = {}

    def register(self, repository_class: Type[T], factory: Optional[Callable[[], T]] = None) -> None:
        key = self._key(repository_class)
        self._factories[key] = factory or (lambda: repository_class(self._session_factory))
        self._instances.pop(key, None)

    def get(self, repository_class: Type[T]) -> T:
        key = self._key(repository_class)

        if key in self._instances:
            return self._instances[key]

        if key in self._factories:
            instance = self._factories[key]()
            self._instances[key] = instance
            return instance

        raise ValueError(f"Repository {repository_class.__name__} not registered")

    def _key(self, repository_class: Type[T]) -> str:
        return f"{repository_class.__module__}.{repository_class.__qualname__}"


def build_registry(session_factory: Optional[sessionmaker] = None) -> RepositoryRegistry:
    """Registry with every storefront repository bound to ``session_factory``"""
    from storefront import repositories

    registry = RepositoryRegistry(session_factory)
    for name in repositories.__all__:
        if name != "BaseRepository":
            registry.register(getattr(repositories, name))
    return registry
