"""
Exception types raised by the Memoria daemon
"""


class MemoriaError(Exception):
    """Base class for all daemon errors"""


class NotFoundError(MemoriaError):
    """Item id or hash is not present in the store"""


class ConflictError(MemoriaError):
    """Insert of a hash that already exists while uniqueness is enforced"""


class InvalidArgumentError(MemoriaError):
    """Malformed request or argument"""


class ExternalToolError(MemoriaError):
    """Clipboard tool could not be run or reported failure"""


class StoreError(MemoriaError):
    """SQLite I/O or constraint failure"""


class ArtifactError(MemoriaError):
    """Image file write, decode or encode failure"""


class SettingsError(MemoriaError):
    """Configuration file could not be read or parsed"""
