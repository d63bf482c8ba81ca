import re
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from pydantic import TypeAdapter

from app.core.schemas import MappingRule


DEFAULT_RULES_PATH = Path(__file__).with_name("rules.json")

_rules_adapter = TypeAdapter(List[MappingRule])


def _phrase_pattern(phrase: str) -> "re.Pattern[str]":
    # Whole words only, a plural ending is still a hit ("purchase orders")
    words = r"\s+".join(re.escape(word) for word in phrase.lower().split())
    return re.compile(rf"\b{words}(?:s|es)?\b")


class DomainLexicon:
    """
    Maps business vocabulary in a question to canonical table names.

    Rules are data (see rules.json) so they can change and be tested without
    touching the generation step.
    """

    def __init__(self, rules: Sequence[MappingRule]):
        self.rules: Tuple[MappingRule, ...] = tuple(rules)
        self._patterns = [
            [(phrase, _phrase_pattern(phrase)) for phrase in sorted(rule.trigger_phrases)]
            for rule in self.rules
        ]

    @classmethod
    def from_file(cls, path: Optional[Path] = None) -> "DomainLexicon":
        path = path or DEFAULT_RULES_PATH
        return cls(_rules_adapter.validate_json(path.read_bytes()))

    def resolve(self, question: str) -> List[MappingRule]:
        """
        Rules triggered by the question, most specific first.

        Specificity is the length of the longest matched phrase. A rule whose
        matches all sit inside text already claimed by a more specific rule
        is dropped, so "pending purchase order" wins over "purchase order".
        """
        text = question.lower()
        candidates = []
        for position, (rule, patterns) in enumerate(zip(self.rules, self._patterns)):
            spans = [
                match.span()
                for _, pattern in patterns
                for match in pattern.finditer(text)
            ]
            if spans:
                longest = max(end - start for start, end in spans)
                candidates.append((-longest, position, rule, spans))

        candidates.sort(key=lambda item: (item[0], item[1]))

        claimed: List[Tuple[int, int]] = []
        resolved: List[MappingRule] = []
        for _, _, rule, spans in candidates:
            free = [
                span
                for span in spans
                if not any(start <= span[0] and span[1] <= end for start, end in claimed)
            ]
            if not free:
                continue
            claimed.extend(free)
            resolved.append(rule)
        return resolved
