"""Presentation layer: HTTP API, middleware and error mapping."""
