"""KORE ERP: agency-scoped data access for a multi-tenant real-estate ERP."""

from .__version__ import __version__

__all__ = ["__version__"]
