"""Module version history."""

from .history import calculate_checksum, next_version_number
from .store import ModuleVersionStore, to_document

__all__ = [
    "ModuleVersionStore",
    "calculate_checksum",
    "next_version_number",
    "to_document",
]
