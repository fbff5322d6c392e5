class PersistenceError(Exception):
    """The security store could not read or write. Callers decide fail-open vs fail-closed."""
