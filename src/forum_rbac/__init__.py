"""Role-based access control engine for the forum API."""

__version__ = "0.1.0"
