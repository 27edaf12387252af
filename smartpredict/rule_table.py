from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Tuple

Handler = Callable[[re.Match, Any], Awaitable[Any]]


@dataclass
class IntentRule:
    """Rule descriptor: a name, a compiled pattern, and the async handler run on a match."""
    name: str
    pattern: re.Pattern
    handler: Handler
    search: bool = False

    def match(self, message: str) -> Optional[re.Match]:
        # `search` rules fire on containment, the rest must match the whole message.
        if self.search:
            return self.pattern.search(message)
        return self.pattern.fullmatch(message)


class RuleTable:
    """Ordered rule runner where the first matching rule wins."""

    def __init__(self, rules: List[IntentRule]) -> None:
        """Purpose: Initialize the table with an ordered list of rules.
        Inputs/Outputs: Input is a list of IntentRule; no return value.
        Side Effects / State: Stores the rule list for later dispatch.
        Dependencies: None beyond IntentRule definitions.
        Failure Modes: None; assumes compiled patterns and async handlers.
        If Removed: Chat messages cannot be classified.
        Testing Notes: Two rules matching the same text must resolve to the first.
        """
        # Store the rules in priority order.
        self._rules = rules

    @property
    def names(self) -> List[str]:
        return [rule.name for rule in self._rules]

    def first_match(self, message: str) -> Optional[Tuple[IntentRule, re.Match]]:
        for rule in self._rules:
            match = rule.match(message)
            if match is not None:
                return rule, match
        return None

    async def dispatch(self, message: str, context: Any) -> Optional[Tuple[str, Any]]:
        """Purpose: Run the handler of the first rule matching the message.
        Inputs/Outputs: Inputs are a normalized message and the per-message context
            handed to the handler; output is (rule name, handler result) or None.
        Side Effects / State: Whatever the chosen handler does.
        Dependencies: Uses first_match.
        Failure Modes: Exceptions in handlers propagate to the caller.
        If Removed: The router has no dispatch step.
        Testing Notes: Verify None is returned for unmatched text.
        """
        found = self.first_match(message)
        if found is None:
            return None
        rule, match = found
        return rule.name, await rule.handler(match, context)
