from .config import JarConfig, load_config
from .note_store import JsonNoteStore
from .session_store import InMemorySessionStore

__all__ = ["JarConfig", "load_config", "JsonNoteStore", "InMemorySessionStore"]
