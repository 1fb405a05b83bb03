from .debug_bundle import create_debug_bundle
from .files import atomic_write_text, quarantine_file, read_text_or_none

__all__ = ["create_debug_bundle", "atomic_write_text", "quarantine_file", "read_text_or_none"]
