"""
EventContext - Shared data container that flows through the event chain.
"""

import numbers

from .errors import ContextKeyError, ContextTypeError

_MISSING = object()


class ContextKey:
    """
    A type-tagged context key.

    Reading through a ContextKey checks the stored value against its type,
    so callers don't have to repeat the expected type at every access:

        USER_ID = ContextKey('user_id', str)
        context.set(USER_ID, 'u-42')
        context.get(USER_ID)  # 'u-42', or ContextTypeError if not a str
    """

    __slots__ = ('name', 'value_type')

    def __init__(self, name, value_type=object):
        self.name = name
        self.value_type = value_type

    def __eq__(self, other):
        if isinstance(other, ContextKey):
            return self.name == other.name and self.value_type == other.value_type
        return NotImplemented

    def __hash__(self):
        return hash((self.name, self.value_type))

    def __repr__(self):
        return f"ContextKey({self.name!r}, {getattr(self.value_type, '__name__', self.value_type)})"

    def __str__(self):
        return self.name


def _resolve(key, expected_type=None):
    """Split a key into its storage name and the type it must satisfy."""
    if isinstance(key, ContextKey):
        return key.name, expected_type if expected_type is not None else key.value_type
    return key, expected_type


class EventContext:
    """
    A shared key/value store that flows through the entire chain.
    Enables communication between sequential events.

    Missing keys and wrongly-typed values are reported with distinct errors
    (ContextKeyError and ContextTypeError). The context does no locking: every
    event in a run mutates the same instance.
    """

    def __init__(self, data=None):
        """
        Initialize the EventContext with optional initial data.

        Args:
            data: Dictionary of initial context data (optional)
        """
        self._data = dict(data) if data is not None else {}

    def get(self, key, expected_type=None):
        """
        Get a value from the context.

        Args:
            key: String key or ContextKey
            expected_type: Optional type (or tuple of types) the value must match

        Returns:
            The stored value

        Raises:
            ContextKeyError: If the key is not present
            ContextTypeError: If the value does not match expected_type
        """
        name, expected_type = _resolve(key, expected_type)
        value = self._data.get(name, _MISSING)
        if value is _MISSING:
            raise ContextKeyError(name)
        if expected_type is not None and not isinstance(value, expected_type):
            raise ContextTypeError(name, expected_type, value)
        return value

    def set(self, key, value):
        """
        Set a value in the context, overwriting any previous value.

        Returns:
            self (for method chaining)
        """
        name, _ = _resolve(key)
        self._data[name] = value
        return self

    def try_get(self, key, expected_type=None):
        """
        Look up a value without raising.

        Returns:
            (True, value) if present and correctly typed, otherwise (False, None)
        """
        try:
            return True, self.get(key, expected_type)
        except (ContextKeyError, ContextTypeError):
            return False, None

    def contains_key(self, key):
        """Check if a key exists in the context."""
        name, _ = _resolve(key)
        return name in self._data

    def get_or_default(self, key, default=None, expected_type=None):
        """
        Get a value, or default if it is absent or of the wrong type.
        """
        found, value = self.try_get(key, expected_type)
        return value if found else default

    def increment(self, key, amount=1, initial=0):
        """
        Add amount to a numeric value, creating it with initial if absent.

        Useful for accumulating scores and counters across events.

        Returns:
            The new value

        Raises:
            ContextTypeError: If the existing value is not a number
        """
        name, _ = _resolve(key)
        current = self._data.get(name, _MISSING)
        if current is _MISSING:
            current = initial
        elif not isinstance(current, numbers.Number) or isinstance(current, bool):
            raise ContextTypeError(name, numbers.Number, current)
        self._data[name] = current + amount
        return self._data[name]

    def append(self, key, item):
        """
        Append an item to a list in the context, creating the list if absent.

        Raises:
            ContextTypeError: If the existing value is not a list
        """
        name, _ = _resolve(key)
        current = self._data.get(name, _MISSING)
        if current is _MISSING:
            current = self._data[name] = []
        elif not isinstance(current, list):
            raise ContextTypeError(name, list, current)
        current.append(item)
        return self

    def update_if_better(self, key, value, comparator=None):
        """
        Store value only if it beats the current one (or nothing is stored yet).

        Args:
            key: String key or ContextKey
            value: Candidate value
            comparator: Optional cmp-style function; comparator(a, b) > 0
                means a is better than b. Defaults to plain ``>``.

        Returns:
            True if the value was stored
        """
        name, _ = _resolve(key)
        current = self._data.get(name, _MISSING)
        if current is not _MISSING:
            if comparator is not None:
                better = comparator(value, current) > 0
            else:
                better = value > current
            if not better:
                return False
        self._data[name] = value
        return True

    def remove(self, key):
        """
        Remove a key from the context.

        Returns:
            self (for method chaining)
        """
        name, _ = _resolve(key)
        self._data.pop(name, None)
        return self

    def clear(self):
        """Clear all data from the context."""
        self._data.clear()
        return self

    def clone(self):
        """Return a shallow copy of the context."""
        return EventContext(self._data)

    def keys(self):
        """Return all keys in the context."""
        return self._data.keys()

    def values(self):
        """Return all values in the context."""
        return self._data.values()

    def items(self):
        """Return all key-value pairs in the context."""
        return self._data.items()

    def to_dict(self):
        """Return a copy of the internal data dictionary."""
        return self._data.copy()

    def __contains__(self, key):
        return self.contains_key(key)

    def __len__(self):
        return len(self._data)

    def __repr__(self):
        return f"EventContext({self._data})"

    def __str__(self):
        return str(self._data)
