"""
ChainableEvent - Base class for discrete units of business logic in an event chain.
"""

from .result import EventResult


def event_name(event):
    """
    Resolve the declared name of an event.

    Uses the event's ``name`` attribute when it has one and falls back to
    the class name, so any object with an ``execute(context)`` method works.
    """
    name = getattr(event, 'name', None)
    if isinstance(name, str) and name:
        return name
    return event.__class__.__name__


class ChainableEvent:
    """
    Base class for events in an event chain.
    Each event represents a discrete unit of business logic.

    Events should be stateless - all state flows through the EventContext.
    execute() may be a plain method or a coroutine; the chain awaits it
    when needed.
    """

    @property
    def name(self):
        """Name reported on results. Defaults to the class name."""
        return self.__class__.__name__

    def execute(self, context):
        """
        Execute the event logic.

        Args:
            context: EventContext containing shared state

        Returns:
            EventResult describing the outcome

        Raises:
            NotImplementedError: This method must be implemented by subclasses
        """
        raise NotImplementedError(f"{self.__class__.__name__} must implement execute()")

    def success(self, data=None, precision_score=100.0):
        """Build a successful result named after this event."""
        return EventResult.create_success(self.name, data, precision_score)

    def failure(self, message, precision_score=0.0):
        """Build a failed result named after this event."""
        return EventResult.create_failure(self.name, message, precision_score)

    def partial_success(self, message, precision_score, data=None):
        """Build a partial success named after this event."""
        return EventResult.create_partial_success(self.name, message, precision_score, data)

    def __repr__(self):
        return f"{self.__class__.__name__}()"

    def __str__(self):
        return self.name
