from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Tuple
import re

from .config import DEFAULT_FALLBACK_RULES


@dataclass(frozen=True)
class VariantRule:
    """A bare kit id pattern and the variant tags it may exist under.

    The tag is inserted as '-<TAG>' before `marker` when the id ends with it,
    otherwise appended to the id.
    """
    pattern: str
    tags: Tuple[str, ...]
    marker: Optional[str] = None

    def candidates(self, item_id: str) -> List[str]:
        if re.search(self.pattern, item_id) is None:
            return []
        if self.marker and item_id.endswith(self.marker):
            base, suffix = item_id[: -len(self.marker)], self.marker
        else:
            base, suffix = item_id, ""
        return [f"{base}-{tag}{suffix}" for tag in self.tags]

    @classmethod
    def from_mapping(cls, data: dict) -> "VariantRule":
        pattern = str(data.get("pattern") or "")
        if not pattern:
            raise ValueError("fallback rule requires a 'pattern'")
        try:
            re.compile(pattern)
        except re.error as e:
            raise ValueError(f"fallback rule pattern {pattern!r} is not a valid regex: {e}") from e
        tags = tuple(str(t).strip() for t in (data.get("tags") or []) if str(t).strip())
        if not tags:
            raise ValueError(f"fallback rule {pattern!r} requires at least one tag")
        marker = data.get("marker")
        return cls(pattern=pattern, tags=tags, marker=str(marker) if marker else None)


class VariantFallback:
    """Resolve a bare kit id to the first existing variant.

    `exists` is asked about each candidate in rule order, then tag order.
    """

    def __init__(self, rules: Iterable[VariantRule]):
        self.rules: Sequence[VariantRule] = tuple(rules)

    @classmethod
    def from_config(cls, rules: Optional[List[dict]] = None) -> "VariantFallback":
        if rules is None:
            rules = DEFAULT_FALLBACK_RULES
        return cls(VariantRule.from_mapping(r) for r in rules)

    def resolve_fallback(self, item_id: str, exists: Callable[[str], bool]) -> Optional[str]:
        for rule in self.rules:
            for candidate in rule.candidates(item_id):
                if candidate != item_id and exists(candidate):
                    return candidate
        return None


NO_FALLBACK = VariantFallback(())
DEFAULT_FALLBACK = VariantFallback.from_config()
