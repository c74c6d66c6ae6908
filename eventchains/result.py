"""
Result - Outcomes of event execution and their chain-level aggregation.

EventResult carries a graduated precision score (0-100) in addition to the
boolean success flag. ChainResult collects the EventResults of one chain run
and computes the aggregate metrics once the run is over.
"""

import math

MIN_PRECISION = 0.0
MAX_PRECISION = 100.0

# Highest threshold first; the first one the score reaches wins.
GRADE_THRESHOLDS = (
    (95.0, "S"),
    (90.0, "A"),
    (80.0, "B"),
    (70.0, "C"),
    (60.0, "D"),
)


def clamp_precision(score):
    """
    Clamp a precision score into [0, 100].

    Args:
        score: Any real number (NaN is treated as 0)

    Returns:
        The clamped score as a float
    """
    score = float(score)
    if math.isnan(score):
        return MIN_PRECISION
    return max(MIN_PRECISION, min(MAX_PRECISION, score))


def calculate_precision_score(results):
    """
    Average the precision scores of a sequence of EventResults.

    An empty run counts as perfect and scores 100.0.
    """
    results = list(results)
    if not results:
        return MAX_PRECISION
    return sum(r.precision_score for r in results) / len(results)


class EventResult:
    """
    Represents the outcome of a single event execution.

    Instances are immutable. Use the factory methods rather than the
    constructor:

        EventResult.create_success('LoadUser', data=user, precision_score=90)
        EventResult.create_failure('LoadUser', 'User not found')
        EventResult.create_partial_success('LoadUser', 'Missing avatar', 75)

    A partial success is still a success; it only carries a reduced score and
    an explanatory message.
    """

    __slots__ = ('_event_name', '_success', '_error_message', '_data', '_precision_score')

    def __init__(self, event_name, success, error_message=None, data=None, precision_score=100.0):
        object.__setattr__(self, '_event_name', event_name)
        object.__setattr__(self, '_success', bool(success))
        object.__setattr__(self, '_error_message', error_message)
        object.__setattr__(self, '_data', data)
        object.__setattr__(self, '_precision_score', clamp_precision(precision_score))

    def __setattr__(self, name, value):
        raise AttributeError(f"{self.__class__.__name__} is immutable")

    def __delattr__(self, name):
        raise AttributeError(f"{self.__class__.__name__} is immutable")

    def __reduce__(self):
        # copy and pickle rebuild through __init__, never through __setattr__
        return (self.__class__, (self._event_name, self._success, self._error_message,
                                 self._data, self._precision_score))

    @property
    def event_name(self):
        return self._event_name

    @property
    def success(self):
        return self._success

    @property
    def error_message(self):
        return self._error_message

    @property
    def data(self):
        return self._data

    @property
    def precision_score(self):
        return self._precision_score

    @staticmethod
    def create_success(event_name, data=None, precision_score=100.0):
        """
        Create a successful result.

        Args:
            event_name: Name of the event that produced the result
            data: Optional payload
            precision_score: Quality of the execution (clamped to 0-100)

        Returns:
            EventResult with success=True
        """
        return EventResult(event_name, True, data=data, precision_score=precision_score)

    @staticmethod
    def create_failure(event_name, error_message, precision_score=0.0):
        """
        Create a failed result.

        Failures may still carry a partial precision score.

        Args:
            event_name: Name of the event that produced the result
            error_message: Why the event failed
            precision_score: Score to report (clamped to 0-100)

        Returns:
            EventResult with success=False
        """
        return EventResult(event_name, False, error_message=error_message,
                           precision_score=precision_score)

    @staticmethod
    def create_partial_success(event_name, message, precision_score, data=None):
        """
        Create a partial success: the event succeeded but not perfectly.

        Args:
            event_name: Name of the event that produced the result
            message: Explanation of what fell short
            precision_score: Reduced score (clamped to 0-100)
            data: Optional payload

        Returns:
            EventResult with success=True and the message attached
        """
        return EventResult(event_name, True, error_message=message, data=data,
                           precision_score=precision_score)

    def is_success(self):
        """Return True if the result indicates success."""
        return self._success

    def is_failure(self):
        """Return True if the result indicates failure."""
        return not self._success

    def __bool__(self):
        return self._success

    def __repr__(self):
        if self._success:
            return (f"EventResult.success({self._event_name!r}, "
                    f"score={self._precision_score:.1f}, data={self._data!r})")
        return (f"EventResult.failure({self._event_name!r}, "
                f"error={self._error_message!r}, score={self._precision_score:.1f})")

    def __str__(self):
        if self._success:
            return f"{self._event_name}: Success ({self._precision_score:.1f})"
        return f"{self._event_name}: Failure: {self._error_message}"


class ChainResult:
    """
    Aggregated outcome of one chain run.

    The orchestrator appends EventResults while the run is in progress and
    writes the aggregate fields exactly once via finalize(). Counts are
    always derived from the collected results.
    """

    def __init__(self, context):
        self._context = context
        self._event_results = []
        self._success = False
        self._total_precision_score = MAX_PRECISION
        self._execution_time_ms = 0.0
        self._finalized = False

    def add(self, event_result):
        """
        Record an EventResult. Only valid while the run is in progress.

        Raises:
            RuntimeError: If the result has already been finalized
        """
        if self._finalized:
            raise RuntimeError("ChainResult is already finalized")
        self._event_results.append(event_result)

    def finalize(self, success, total_precision_score, execution_time_ms):
        """
        Write the aggregate fields. Called once, at the end of a run.

        Raises:
            RuntimeError: If called a second time
        """
        if self._finalized:
            raise RuntimeError("ChainResult is already finalized")
        self._success = bool(success)
        self._total_precision_score = float(total_precision_score)
        self._execution_time_ms = float(execution_time_ms)
        self._finalized = True
        return self

    @property
    def finalized(self):
        return self._finalized

    @property
    def event_results(self):
        """Individual results in execution order."""
        return tuple(self._event_results)

    @property
    def success(self):
        """Overall success; its meaning depends on the fault tolerance mode."""
        return self._success

    @property
    def total_precision_score(self):
        return self._total_precision_score

    @property
    def execution_time_ms(self):
        return self._execution_time_ms

    @property
    def context(self):
        """The context the run operated on, in its final state."""
        return self._context

    @property
    def success_count(self):
        return sum(1 for r in self._event_results if r.success)

    @property
    def failure_count(self):
        return sum(1 for r in self._event_results if not r.success)

    @property
    def total_count(self):
        return len(self._event_results)

    @property
    def first_failure(self):
        """The first failed EventResult, or None if nothing failed."""
        for result in self._event_results:
            if not result.success:
                return result
        return None

    def get_grade(self):
        """Map the total precision score to a letter grade (S, A-D, F)."""
        for threshold, grade in GRADE_THRESHOLDS:
            if self._total_precision_score >= threshold:
                return grade
        return "F"

    def __bool__(self):
        return self._success

    def __repr__(self):
        return (f"ChainResult(success={self._success}, "
                f"events={self.total_count}, failures={self.failure_count}, "
                f"score={self._total_precision_score:.1f}, "
                f"time_ms={self._execution_time_ms:.2f})")
