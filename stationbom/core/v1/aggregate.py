from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Union
import logging

from .catalog import coerce_quantity
from .expander import NodeKind, ResolvedNode

logger = logging.getLogger(__name__)


# -------------------------------
# Export-ready views of an expanded BOM
#   flatten   -> one line per visited node (no merging)
#   aggregate -> one line per identifier, quantities summed
#   sort      -> physical-assembly order via the category priority table
# -------------------------------

CATEGORY_PRIORITY: Dict[str, int] = {
    "SINK": 1,
    "BASIN": 2,
    "LEGS": 3,
    "FEET": 4,
    "PEGBOARD": 5,
    "FAUCET": 6,
    "SPRAYER": 7,
    "CONTROL": 8,
    "ACCESSORY": 9,
    "HARDWARE": 10,
    "UNCATEGORIZED": 999,
}

UNCATEGORIZED = "UNCATEGORIZED"


@dataclass(frozen=True)
class LineItem:
    identifier: str
    description: str
    quantity: int
    category: str = UNCATEGORIZED
    source: str = "UNKNOWN"
    level: int = 0
    kind: Optional[str] = None
    parent_id: Optional[str] = None

    @classmethod
    def from_mapping(cls, item: Mapping) -> "LineItem":
        """Build a line from a flat BOM item as stored by the order system.

        Raises ValueError when the quantity is missing or not a positive integer.
        """
        ident = (
            item.get("identifier")
            or item.get("partNumber")
            or item.get("assemblyId")
            or item.get("partIdOrAssemblyId")
            or item.get("id")
            or "UNKNOWN"
        )
        ident = str(ident)
        qty = item.get("quantity")
        if qty is None:
            raise ValueError(f"BOM item {ident} has no quantity")
        return cls(
            identifier=ident,
            description=str(item.get("description") or item.get("name") or ident),
            quantity=coerce_quantity(qty),
            category=str(item.get("category") or item.get("itemType") or UNCATEGORIZED),
            source=str(item.get("source") or item.get("itemType") or "UNKNOWN"),
            level=int(item.get("level") or 0),
            kind=item.get("kind"),
            parent_id=item.get("parentId") or item.get("parent_id"),
        )

    def to_dict(self) -> dict:
        return {
            "identifier": self.identifier,
            "description": self.description,
            "quantity": self.quantity,
            "category": self.category,
            "source": self.source,
            "level": self.level,
            "kind": self.kind,
            "parent_id": self.parent_id,
        }


@dataclass(frozen=True)
class AggregatedLineItem:
    identifier: str
    description: str
    quantity: int
    category: str
    contributing_sources: FrozenSet[str] = field(default_factory=frozenset)

    def to_dict(self) -> dict:
        return {
            "identifier": self.identifier,
            "description": self.description,
            "quantity": self.quantity,
            "category": self.category,
            "sources": sorted(self.contributing_sources),
        }


ItemLike = Union[LineItem, AggregatedLineItem, Mapping]


def flatten(trees: Iterable[ResolvedNode], sources: Optional[Sequence[str]] = None) -> List[LineItem]:
    """Pre-order listing of every node in every tree, composites included.

    Each tree's lines carry `sources[i]` as their origin tag, or the root id.
    """
    lines: List[LineItem] = []
    for idx, root in enumerate(trees):
        src = sources[idx] if sources is not None and idx < len(sources) else root.id

        def visit(node: ResolvedNode, parent_id: Optional[str]) -> None:
            lines.append(LineItem(
                identifier=node.id,
                description=node.name,
                quantity=node.quantity,
                category=node.category or UNCATEGORIZED,
                source=src,
                level=node.level,
                kind=node.kind.value,
                parent_id=parent_id,
            ))
            for child in node.children:
                visit(child, node.id)

        visit(root, None)
    return lines


def _normalize(item: ItemLike) -> AggregatedLineItem:
    if isinstance(item, AggregatedLineItem):
        return item
    if not isinstance(item, LineItem):
        if not isinstance(item, Mapping):
            raise ValueError(f"Cannot aggregate {type(item).__name__}; flatten resolved trees first")
        item = LineItem.from_mapping(item)
    return AggregatedLineItem(
        identifier=item.identifier,
        description=item.description,
        quantity=item.quantity,
        category=item.category,
        contributing_sources=frozenset([item.source]),
    )


def aggregate(items: Iterable[ItemLike]) -> List[AggregatedLineItem]:
    """Merge lines sharing an identifier: sum quantities, union sources.

    Output keeps first-seen order. Description and category come from the
    first occurrence; the category is upper-cased.
    """
    merged: Dict[str, AggregatedLineItem] = {}
    for raw in items:
        item = _normalize(raw)
        category = (item.category or UNCATEGORIZED).upper()
        existing = merged.get(item.identifier)
        if existing is None:
            merged[item.identifier] = AggregatedLineItem(
                identifier=item.identifier,
                description=item.description,
                quantity=item.quantity,
                category=category,
                contributing_sources=frozenset(item.contributing_sources),
            )
            continue
        if category != existing.category:
            logger.debug("Category mismatch for %s: keeping %s, ignoring %s",
                         item.identifier, existing.category, category)
        merged[item.identifier] = AggregatedLineItem(
            identifier=existing.identifier,
            description=existing.description,
            quantity=existing.quantity + item.quantity,
            category=existing.category,
            contributing_sources=existing.contributing_sources | item.contributing_sources,
        )
    return list(merged.values())


def category_rank(category: Optional[str]) -> int:
    return CATEGORY_PRIORITY.get((category or UNCATEGORIZED).upper(), CATEGORY_PRIORITY[UNCATEGORIZED])


def sort_by_category_priority(items: Iterable[AggregatedLineItem]) -> List[AggregatedLineItem]:
    """Physical-assembly order: category rank, then identifier."""
    return sorted(items, key=lambda it: (category_rank(it.category), it.identifier))


def export_rows(
    data: Iterable[Union[ResolvedNode, ItemLike]],
    sources: Optional[Sequence[str]] = None,
) -> List[AggregatedLineItem]:
    """Aggregated, sorted rows ready for a CSV/PDF renderer.

    Accepts a forest of resolved trees or an already-flat list of line items.
    """
    data = list(data)
    trees = sum(1 for d in data if isinstance(d, ResolvedNode))
    if trees and trees != len(data):
        raise ValueError("export_rows expects either resolved trees or flat line items, not both")
    if trees:
        lines: List[ItemLike] = list(flatten(data, sources))
    else:
        lines = data
    return sort_by_category_priority(aggregate(lines))


@dataclass(frozen=True)
class BomSummary:
    total_items: int = 0
    total_quantity: int = 0
    max_depth: int = 0
    items_by_level: Dict[int, int] = field(default_factory=dict)
    assemblies_count: int = 0
    parts_count: int = 0
    unknown_count: int = 0

    def to_dict(self) -> dict:
        return {
            "total_items": self.total_items,
            "total_quantity": self.total_quantity,
            "max_depth": self.max_depth,
            "items_by_level": dict(self.items_by_level),
            "assemblies_count": self.assemblies_count,
            "parts_count": self.parts_count,
            "unknown_count": self.unknown_count,
        }


def summarize(lines: Iterable[LineItem]) -> BomSummary:
    """Counts over flattened lines, for export headers and unknown-part reports."""
    total_items = 0
    total_qty = 0
    max_depth = 0
    by_level: Dict[int, int] = {}
    kinds = {k.value: 0 for k in NodeKind}
    for ln in lines:
        total_items += 1
        total_qty += ln.quantity
        max_depth = max(max_depth, ln.level)
        by_level[ln.level] = by_level.get(ln.level, 0) + 1
        if ln.kind in kinds:
            kinds[ln.kind] += 1
    return BomSummary(
        total_items=total_items,
        total_quantity=total_qty,
        max_depth=max_depth,
        items_by_level=by_level,
        assemblies_count=kinds[NodeKind.ASSEMBLY.value],
        parts_count=kinds[NodeKind.PART.value],
        unknown_count=kinds[NodeKind.UNKNOWN.value],
    )
