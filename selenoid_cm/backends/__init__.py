"""Backend layer - provisioning substrates."""

from selenoid_cm.backends.base import Backend
from selenoid_cm.backends.docker import ContainerBackend
from selenoid_cm.backends.drivers import DriverBackend
from selenoid_cm.backends.selector import select_backend

__all__ = [
    "Backend",
    "ContainerBackend",
    "DriverBackend",
    "select_backend",
]
