from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union
import logging

from .catalog import CatalogSnapshot, CatalogStore, coerce_quantity
from .fallback import DEFAULT_FALLBACK, VariantFallback

logger = logging.getLogger(__name__)


# -------------------------------
# Hierarchical expansion
#   - Depth-first, pre-order walk from one catalog reference
#   - Quantities multiply down each level
#   - Cycle guard is scoped to the current path (copy-on-descend)
# -------------------------------


class NodeKind(str, Enum):
    ASSEMBLY = "ASSEMBLY"
    PART = "PART"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class ResolvedNode:
    id: str
    name: str
    kind: NodeKind
    category: str
    quantity: int
    level: int
    children: Tuple["ResolvedNode", ...] = ()
    type: Optional[str] = None
    manufacturer: Optional[str] = None
    # Id as referenced, when a variant fallback substituted another id
    requested_id: Optional[str] = None

    @property
    def is_assembly(self) -> bool:
        return self.kind is NodeKind.ASSEMBLY

    @property
    def is_part(self) -> bool:
        return self.kind is NodeKind.PART

    def walk(self) -> Iterable["ResolvedNode"]:
        """Yield this node and every descendant in pre-order."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def to_dict(self) -> dict:
        out = {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "category": self.category,
            "quantity": self.quantity,
            "level": self.level,
        }
        if self.type:
            out["type"] = self.type
        if self.manufacturer:
            out["manufacturer"] = self.manufacturer
        if self.requested_id:
            out["requested_id"] = self.requested_id
        out["children"] = [c.to_dict() for c in self.children]
        return out


def _check_quantity(quantity) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValueError(f"quantity must be an integer >= 1, got {quantity!r}")


def _available_snapshot(store: CatalogStore) -> Tuple[Optional[CatalogSnapshot], Optional[str]]:
    """Snapshot and load diagnostic from one read; the snapshot is None after a failed load."""
    _, snap, diagnostic = store.current()
    if snap is None:
        logger.debug("Catalog not initialized (%s); skipping expansion", diagnostic)
    return snap, diagnostic


def _assembly_node(snap: CatalogSnapshot, asm_id: str, quantity: int, level: int,
                   path: FrozenSet[str], fallback: VariantFallback,
                   requested_id: Optional[str] = None) -> ResolvedNode:
    asm = snap.assemblies[asm_id]
    children: List[ResolvedNode] = []
    for comp in asm.components:
        child = _expand(
            snap,
            comp.reference_id,
            comp.quantity * quantity,
            level + 1,
            path,
            fallback,
            parent=asm_id,
        )
        if child is not None:
            children.append(child)
    return ResolvedNode(
        id=asm_id,
        name=asm.name,
        kind=NodeKind.ASSEMBLY,
        category=asm.category_code or "ASSEMBLY",
        quantity=quantity,
        level=level,
        children=tuple(children),
        type=asm.kind,
        requested_id=requested_id,
    )


def _part_node(snap: CatalogSnapshot, part_id: str, quantity: int, level: int,
               requested_id: Optional[str] = None) -> ResolvedNode:
    part = snap.parts[part_id]
    return ResolvedNode(
        id=part_id,
        name=part.name,
        kind=NodeKind.PART,
        category="PART",
        quantity=quantity,
        level=level,
        type=part.kind or "COMPONENT",
        manufacturer=part.manufacturer_info,
        requested_id=requested_id,
    )


def _expand(snap: CatalogSnapshot, item_id: str, quantity: int, level: int,
            path: FrozenSet[str], fallback: VariantFallback,
            parent: Optional[str] = None) -> Optional[ResolvedNode]:
    if item_id in path:
        logger.warning("Circular reference detected: %s at level %d (parent %s)", item_id, level, parent)
        return None
    path = path | {item_id}

    if item_id in snap.assemblies:
        return _assembly_node(snap, item_id, quantity, level, path, fallback)

    substitute = fallback.resolve_fallback(item_id, lambda c: c in snap.assemblies or c in snap.parts)
    if substitute is not None:
        if substitute in path:
            logger.warning("Circular reference detected: %s (for %s) at level %d (parent %s)",
                           substitute, item_id, level, parent)
            return None
        logger.info("Using fallback for %s -> %s", item_id, substitute)
        if substitute in snap.assemblies:
            return _assembly_node(snap, substitute, quantity, level, path | {substitute}, fallback,
                                  requested_id=item_id)
        return _part_node(snap, substitute, quantity, level, requested_id=item_id)

    if item_id in snap.parts:
        return _part_node(snap, item_id, quantity, level)

    logger.warning("Unknown item: %s (parent %s)", item_id, parent or "<root>")
    return ResolvedNode(
        id=item_id,
        name=f"Unknown Item: {item_id}",
        kind=NodeKind.UNKNOWN,
        category="UNKNOWN",
        quantity=quantity,
        level=level,
        type="UNKNOWN",
    )


def expand_item(
    store: CatalogStore,
    reference_id: str,
    quantity: int = 1,
    level: int = 0,
    visited: FrozenSet[str] = frozenset(),
    *,
    fallback: Optional[VariantFallback] = None,
    parent: Optional[str] = None,
) -> Optional[ResolvedNode]:
    """Expand one assembly or part reference to its full resolved tree.

    `visited` holds the ids already on the path above this call. Returns None
    when the reference closes a cycle or the catalog failed to load; unknown
    references come back as UNKNOWN nodes.
    """
    _check_quantity(quantity)
    if not isinstance(reference_id, str) or not reference_id.strip():
        raise ValueError("reference_id is required")
    snap, _ = _available_snapshot(store)
    if snap is None:
        return None
    return _expand(snap, reference_id.strip(), quantity, level, frozenset(visited),
                   fallback if fallback is not None else DEFAULT_FALLBACK, parent=parent)


def compute_max_depth(store: CatalogStore, assembly_id: str) -> int:
    """Longest assembly -> assembly chain reachable from assembly_id.

    Parts and unknown ids contribute nothing; a cycle stops at the repeated id.
    """
    snap = store.snapshot()
    if snap is None:
        return 0

    def depth(asm_id: str, path: FrozenSet[str]) -> int:
        asm = snap.assemblies.get(asm_id)
        if asm is None or asm_id in path:
            return 0
        path = path | {asm_id}
        best = 0
        for comp in asm.components:
            if comp.reference_id in snap.assemblies:
                best = max(best, 1 + depth(comp.reference_id, path))
        return best

    return depth(assembly_id, frozenset())


def deep_assemblies(store: CatalogStore, min_depth: int = 2) -> List[dict]:
    """All assemblies whose hierarchy is at least min_depth levels deep, deepest first."""
    snap = store.snapshot()
    if snap is None:
        return []
    out = []
    for asm_id, asm in snap.assemblies.items():
        d = compute_max_depth(store, asm_id)
        if d >= min_depth:
            out.append({"id": asm_id, "name": asm.name, "depth": d})
    out.sort(key=lambda r: (-r["depth"], r["id"]))
    return out


# -------------------------------
# BOM list expansion (one order / build)
# -------------------------------


@dataclass(frozen=True)
class Selection:
    """One top-level order selection (sink model, basin kit, accessory, ...)."""
    identifier: str
    quantity: int = 1
    source: Optional[str] = None

    @classmethod
    def from_mapping(cls, item: Mapping) -> "Selection":
        ident = item.get("identifier") or item.get("id") or item.get("assemblyId") or item.get("partNumber")
        if not ident or not str(ident).strip():
            raise ValueError(f"BOM item has no identifier: {dict(item)!r}")
        qty = item.get("quantity")
        qty = 1 if qty is None else coerce_quantity(qty)
        source = item.get("source") or item.get("itemType")
        return cls(identifier=str(ident).strip(), quantity=qty, source=str(source) if source else None)


SelectionLike = Union[Selection, Mapping]


def _as_selection(item: SelectionLike) -> Selection:
    sel = item if isinstance(item, Selection) else Selection.from_mapping(item)
    _check_quantity(sel.quantity)
    return sel


@dataclass(frozen=True)
class BomResult:
    forest: Tuple[ResolvedNode, ...] = ()
    # Origin tag per forest root, aligned with `forest`
    sources: Tuple[str, ...] = ()
    # Selections returned as-is because the catalog is unavailable
    passthrough: Tuple[Selection, ...] = ()
    diagnostic: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "forest": [n.to_dict() for n in self.forest],
            "sources": list(self.sources),
            "passthrough": [
                {"identifier": s.identifier, "quantity": s.quantity, "source": s.source}
                for s in self.passthrough
            ],
            "diagnostic": self.diagnostic,
        }


def expand_bom_list(
    store: CatalogStore,
    selections: Iterable[SelectionLike],
    *,
    fallback: Optional[VariantFallback] = None,
) -> List[ResolvedNode]:
    """Expand each selection at level 0 with a fresh visited set, preserving order."""
    return list(generate_bom(store, selections, fallback=fallback).forest)


def generate_bom(
    store: CatalogStore,
    selections: Iterable[SelectionLike],
    *,
    fallback: Optional[VariantFallback] = None,
) -> BomResult:
    """Expand an order's selections into a forest, tagging each root with its origin.

    If the catalog failed to load, nothing is expanded and the selections are
    passed through with the load diagnostic.
    """
    sels = [_as_selection(s) for s in selections]
    snap, diagnostic = _available_snapshot(store)
    if snap is None:
        return BomResult(passthrough=tuple(sels), diagnostic=diagnostic)
    fb = fallback if fallback is not None else DEFAULT_FALLBACK
    forest: List[ResolvedNode] = []
    sources: List[str] = []
    for sel in sels:
        node = _expand(snap, sel.identifier, sel.quantity, 0, frozenset(), fb)
        if node is not None:
            forest.append(node)
            sources.append(sel.source or sel.identifier)
    return BomResult(forest=tuple(forest), sources=tuple(sources))
