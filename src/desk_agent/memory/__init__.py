"""Memory management for desk-agent."""

from .session_memory import SessionMemory, load_global_memory

__all__ = ["SessionMemory", "load_global_memory"]
