"""FastAPI dependencies."""

from .services import AppServices, get_identity, get_services, get_trace_context_dep

__all__ = ["AppServices", "get_identity", "get_services", "get_trace_context_dep"]
