"""
Convenience events built on ChainableEvent.

Each of these is an independent implementation of the event capability:
timing windows, layered precision rings, conditional execution, nested
chains and inline validation.
"""

import inspect

from .event import ChainableEvent

INPUT_TIME_KEY = 'input_time_ms'
TOTAL_SCORE_KEY = 'total_score'
BEST_EFFECT_KEY = 'best_effect'


def _compare_ordinal(a, b):
    return (a > b) - (a < b)


class TimingEvent(ChainableEvent):
    """
    Succeed when the player's input lands inside a timing window.

    Reads from context:
        - 'input_time_ms': When the input happened, relative to the prompt

    Sets in context:
        - 'total_score': Incremented by precision_score on a hit
        - 'best_effect': Best (ordinal) effect seen so far, if effect is set
    """

    def __init__(self, window_ms, precision_score, effect=None):
        """
        Initialize the TimingEvent.

        Args:
            window_ms: Width of the window in milliseconds
            precision_score: Score awarded at the very edge of the window
            effect: Optional effect identifier for game logic
        """
        self.window_ms = window_ms
        self.precision_score = precision_score
        self.effect = effect

    def execute(self, context):
        input_time = context.get_or_default(INPUT_TIME_KEY)

        if input_time is None or input_time > self.window_ms:
            return self.failure(f"Missed {self.name} ({self.window_ms}ms window)", 0.0)

        precision = self.calculate_precision(input_time)
        context.increment(TOTAL_SCORE_KEY, self.precision_score, 0.0)
        if self.effect is not None:
            context.update_if_better(BEST_EFFECT_KEY, self.effect, _compare_ordinal)

        return self.success({
            'window_ms': self.window_ms,
            'actual_time_ms': input_time,
            'effect': self.effect,
            'precision': precision,
        }, precision)

    def calculate_precision(self, actual_time_ms):
        """
        Linear curve: 100 at 0ms, precision_score at the window edge.
        Override for custom precision curves.
        """
        if self.window_ms <= 0:
            return 100.0
        ratio = 1.0 - (actual_time_ms / self.window_ms)
        return self.precision_score + ratio * (100.0 - self.precision_score)


class PrecisionLayer:
    """One ring of a LayeredPrecisionEvent."""

    def __init__(self, name, window_ms, score, effect=None, data=None):
        self.name = name
        self.window_ms = window_ms
        self.score = score
        self.effect = effect
        self.data = data

    def __repr__(self):
        return f"PrecisionLayer({self.name!r}, window_ms={self.window_ms}, score={self.score})"


class LayeredPrecisionEvent(ChainableEvent):
    """
    Concentric precision rings, like a layered QTE.

    The innermost ring the input lands in decides the reward; the precision
    score is the fraction of rings hit.

    Reads from context:
        - 'input_time_ms'

    Sets in context:
        - 'total_score': Incremented by the best layer's score
        - 'best_effect': The best layer's effect, if any
    """

    def __init__(self, layers=None):
        self.layers = list(layers) if layers else []

    def add_layer(self, name, window_ms, score, effect=None, data=None):
        """
        Add a layer. Add from outermost (easiest) to innermost (hardest).

        Returns:
            self (for method chaining)
        """
        self.layers.append(PrecisionLayer(name, window_ms, score, effect, data))
        return self

    def execute(self, context):
        input_time = context.get_or_default(INPUT_TIME_KEY)
        if input_time is None:
            return self.failure("No input detected")

        hit = [layer for layer in self.layers if input_time <= layer.window_ms]
        if not hit:
            return self.failure(f"Missed all layers (input at {input_time}ms)", 0.0)

        best = min(hit, key=lambda layer: layer.window_ms)
        context.increment(TOTAL_SCORE_KEY, best.score, 0.0)
        if best.effect is not None:
            context.set(BEST_EFFECT_KEY, best.effect)

        return self.success({
            'layer': best.name,
            'window_ms': best.window_ms,
            'actual_time_ms': input_time,
            'effect': best.effect,
            'layers_hit': len(hit),
        }, len(hit) / len(self.layers) * 100.0)


class ConditionalEvent(ChainableEvent):
    """
    Run an inner event only when a context condition holds.

    A skipped event counts as a perfect success so it never drags down the
    chain's score.
    """

    def __init__(self, condition, inner_event, condition_description="condition"):
        self.condition = condition
        self.inner_event = inner_event
        self.condition_description = condition_description

    async def execute(self, context):
        if self.condition(context):
            result = self.inner_event.execute(context)
            if inspect.isawaitable(result):
                result = await result
            return result

        return self.success({
            'skipped': True,
            'reason': f"Condition '{self.condition_description}' not met",
        }, 100.0)


class SubChainEvent(ChainableEvent):
    """
    Run a whole EventChain as one event.

    The sub-chain runs on its own context; its overall success and total
    precision score become this event's result.
    """

    def __init__(self, sub_chain, name=None):
        self.sub_chain = sub_chain
        self._name = name

    @property
    def name(self):
        return self._name or super().name

    async def execute(self, context):
        result = await self.sub_chain.execute_with_results()

        if result.success:
            return self.success({
                'sub_chain_result': result,
                'events_executed': result.total_count,
                'precision': result.total_precision_score,
            }, result.total_precision_score)

        return self.failure(f"Sub-chain failed: {result.failure_count} failures",
                            result.total_precision_score)


class ValidationEvent(ChainableEvent):
    """
    Inline validation step.

    The validator receives the context and returns (is_valid, error_message).
    """

    def __init__(self, validator, name=None):
        self.validator = validator
        self._name = name

    @property
    def name(self):
        return self._name or super().name

    def execute(self, context):
        is_valid, error_message = self.validator(context)
        if is_valid:
            return self.success({'validation_passed': True})
        return self.failure(error_message or "Validation failed")
