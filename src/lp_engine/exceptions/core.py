class LpEngineError(Exception):
    pass

class ConfigError(LpEngineError):
    pass

class DataError(LpEngineError):
    pass


class RecoverableError(LpEngineError):
    """Transient or retryable failure; handled at the engine iteration boundary."""


class StorageError(RecoverableError):
    """Persistence-layer failure (locked database, I/O error, ...)."""


class OperationCancelled(RecoverableError):
    """Raised by store operations when the caller's stop signal is already set."""


class FatalError(LpEngineError):
    """Non-recoverable failure requiring supervised shutdown."""
