"""Fleet snapshot: canonical, de-duplicated fleet status from a multi-tenant dispatch API."""

__version__ = "0.1.0"

from fleet_snapshot.__main__ import main

__all__ = ["main", "__version__"]
