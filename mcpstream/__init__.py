"""Streamable HTTP transport for Model Context Protocol servers, as an ASGI application."""

__version__ = "0.1.0"