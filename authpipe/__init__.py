"""External authorization pipeline with WSGI check, OIDC discovery and health services."""

__version__ = "0.1.0"