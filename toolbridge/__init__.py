from __future__ import annotations

from .bridge import Bridge
from .client import BridgeClient
from .config import Settings

__version__ = "0.1.0"

__all__ = ["Bridge", "BridgeClient", "Settings", "__version__"]
