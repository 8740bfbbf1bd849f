"""Record loaders for target services."""

from .base import BaseLoader
from .odata_loader import ODataLoader

__all__ = [
    "BaseLoader",
    "ODataLoader",
]
