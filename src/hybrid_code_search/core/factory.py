"""Component factory for creating commonly used objects."""

import functools
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import typer
from loguru import logger

from ..cli.output import print_error
from ..config.settings import IndexingSettings, load_settings
from .composite import CompositeIndexService
from .exceptions import HybridSearchError
from .search import SemanticSearchService

F = TypeVar("F", bound=Callable[..., Any])


@dataclass
class ComponentBundle:
    """Bundle of commonly used components."""

    settings: IndexingSettings
    index: CompositeIndexService
    search: SemanticSearchService


class ComponentFactory:
    """Factory for creating commonly used components."""

    @staticmethod
    def create_index_service(settings: IndexingSettings) -> CompositeIndexService:
        return CompositeIndexService(settings)

    @staticmethod
    def create_search_service(
        index: CompositeIndexService, settings: IndexingSettings
    ) -> SemanticSearchService:
        return SemanticSearchService(index, settings)

    @staticmethod
    def create_standard_components(
        settings: IndexingSettings | None = None, **overrides: Any
    ) -> ComponentBundle:
        """Create the index and search services for CLI commands.

        Args:
            settings: Preloaded settings; read from the environment when omitted
            **overrides: Setting values that take precedence over the environment

        Returns:
            ComponentBundle sharing one index service

        Raises:
            ConfigError: If the environment holds invalid settings
        """
        settings = settings or load_settings(**overrides)
        index = ComponentFactory.create_index_service(settings)
        return ComponentBundle(
            settings=settings,
            index=index,
            search=ComponentFactory.create_search_service(index, settings),
        )


class ComponentContext:
    """Async context manager that closes the bundle's services on exit."""

    def __init__(self, bundle: ComponentBundle):
        self.bundle = bundle

    async def __aenter__(self) -> ComponentBundle:
        return self.bundle

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.bundle.index.close()


def handle_cli_errors(operation_name: str) -> Callable[[F], F]:
    """Decorator for consistent CLI error handling.

    Args:
        operation_name: Name of the operation for error messages

    Returns:
        Decorator function
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except HybridSearchError as e:
                logger.error(f"{operation_name} failed: {e}")
                print_error(f"{operation_name} failed: {e}")
                raise typer.Exit(1)

        return wrapper  # type: ignore[return-value]

    return decorator
