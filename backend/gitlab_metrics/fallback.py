"""Ordered fallback rules for derived timestamps."""

from typing import Any, Callable, Iterable, Optional, Tuple

Rule = Tuple[str, Callable[..., Any]]


class FallbackChain:
    """Evaluates `(signal, extractor)` rules in priority order.

    The first extractor returning a non-empty value wins, and the name of
    its signal is reported as the provenance of that value.
    """

    def __init__(self, rules: Iterable[Rule]):
        self.rules = list(rules)

    def resolve(self, *args, **kwargs) -> Tuple[Optional[Any], Optional[str]]:
        """Return (value, source); (None, None) when no rule produced a value."""
        for source, extractor in self.rules:
            value = extractor(*args, **kwargs)
            if value:
                return value, source
        return None, None
