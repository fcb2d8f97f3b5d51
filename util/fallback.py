"""
util/fallback.py

Ordered fallback chains: try strategies in sequence, first success wins.

A strategy is a callable that either returns a value or raises one of the
assistant's expected failures (GatewayError, ParseError, BackendError...).
A strategy may also return `FAILED` to decline without an exception.
"""

import logging
from dataclasses import dataclass
from typing import Callable

from assistant.errors import AssistantError


logger = logging.getLogger(__name__)

FAILED = object()


@dataclass
class Strategy:
    name: str
    fn: Callable


class FallbackChain:
    def __init__(self, name, strategies, default=None):
        self.name = name
        self.strategies = [s if isinstance(s, Strategy) else Strategy(getattr(s, "__name__", "strategy"), s)
                           for s in strategies]
        self.default = default

    def run(self, *args, **kwargs):
        """Return the first successful strategy result, else the default."""
        for strategy in self.strategies:
            try:
                result = strategy.fn(*args, **kwargs)
            except AssistantError as exc:
                logger.info("%s: %s failed (%s), falling back", self.name, strategy.name, exc)
                continue
            if result is FAILED:
                logger.debug("%s: %s declined", self.name, strategy.name)
                continue
            return result
        default = self.default() if callable(self.default) else self.default
        logger.info("%s: all strategies failed, using default", self.name)
        return default
