import re
from typing import Any, Optional

from .dependency_injector import DependencyInjector

CASE_PATTERN = re.compile(r"(?<!^)(?=[A-Z])")


service_registry: dict[str, type] = {}


class Service():
    """
    All services should inherit from this class.

    Subclasses are registered under the snake case version of their class
    name, which is also the parameter name other services use to request
    them. `PreGameNegotiator` becomes `pre_game_negotiator`.
    """
    def __init_subclass__(cls, name: Optional[str] = None, **kwargs: Any):
        super().__init_subclass__(**kwargs)
        service_registry[name or snake_case(cls.__name__)] = cls

    async def initialize(self) -> None:
        """
        Called once while the server is starting.
        """
        pass  # pragma: no cover

    async def shutdown(self) -> None:
        """
        Called once after the server received the shutdown signal.
        """
        pass  # pragma: no cover


def create_services(
    injectables: dict[str, object] = {},
    services: Optional[dict[str, type]] = None
) -> dict[str, Service]:
    """
    Resolve service dependencies and instantiate each service. By default all
    registered services are built.
    """
    injector = DependencyInjector()
    injector.add_injectables(**injectables)

    return injector.build_classes(
        service_registry if services is None else services
    )


def snake_case(string: str) -> str:
    return CASE_PATTERN.sub("_", string).lower()
