"""
Service framework

Services are singletons that are constructed once, wired together by
constructor parameter names, and started and stopped together.
"""

from .dependency_injector import DependencyInjector
from .service import Service, create_services

__all__ = (
    "DependencyInjector",
    "Service",
    "create_services"
)
