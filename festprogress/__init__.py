"""Festival progress engine - status, time and progress derivation."""

# No imports at package level to avoid circular import issues
# Import modules directly where needed

__all__ = [
    "aggregate",
    "classifier",
    "config",
    "errors",
    "festival_logging",
    "manager",
    "markdown",
    "migrate",
    "models",
    "resolve",
    "store",
    "workflow",
]
