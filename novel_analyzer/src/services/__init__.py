"""Services modules for bootstrap and tick coordination."""

from .bootstrap import ServiceBootstrapper
from .scheduler import TickCoordinator

__all__ = [
    'ServiceBootstrapper',
    'TickCoordinator'
]
