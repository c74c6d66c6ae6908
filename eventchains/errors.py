"""
Errors - Exceptions raised by EventChains.

Runtime faults inside events are never raised out of a chain run; they are
normalized into failed EventResults. The exceptions here cover the two places
where a fault does surface: context access and the legacy execute() entry point.
"""


class EventChainError(Exception):
    """
    Raised by the legacy execute() entry point when a STRICT run fails.

    The full ChainResult is attached for diagnosis.
    """

    def __init__(self, message, result):
        super().__init__(message)
        self.result = result


class EventContextError(Exception):
    """Base class for EventContext access errors."""


class ContextKeyError(EventContextError, KeyError):
    """Raised when a requested key is not present in the context."""

    def __init__(self, key):
        super().__init__(key)
        self.key = key

    def __str__(self):
        return f"Key '{self.key}' not found in context"


class ContextTypeError(EventContextError, TypeError):
    """Raised when a stored value does not have the requested type."""

    def __init__(self, key, expected_type, actual_value):
        self.key = key
        self.expected_type = expected_type
        self.actual_type = type(actual_value)
        super().__init__(
            f"Key '{key}' holds {self.actual_type.__name__}, "
            f"expected {_type_name(expected_type)}"
        )


def _type_name(expected_type):
    if isinstance(expected_type, tuple):
        return " or ".join(t.__name__ for t in expected_type)
    return getattr(expected_type, '__name__', str(expected_type))
