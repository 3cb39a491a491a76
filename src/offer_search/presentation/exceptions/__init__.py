"""HTTP error mapping."""
from __future__ import annotations

from offer_search.presentation.exceptions.handlers import register_exception_handlers

__all__ = ["register_exception_handlers"]
