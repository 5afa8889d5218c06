from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple
import json
import logging
import threading

import yaml

logger = logging.getLogger(__name__)


# -------------------------------
# Catalog Store
#   - Two read-only maps: assemblies and parts, keyed by catalog id
#   - Loaded once from static documents; reload swaps a whole new snapshot
# -------------------------------

UNLOADED = "unloaded"
READY = "ready"
FAILED = "failed"


class CatalogError(Exception):
    """Base class for catalog errors."""


class CatalogLoadError(CatalogError):
    """Catalog source documents are missing or malformed."""


class CatalogNotLoadedError(CatalogError):
    """The catalog was queried before any load was attempted."""


@dataclass(frozen=True)
class ComponentRef:
    reference_id: str
    quantity: int
    notes: Optional[str] = None


@dataclass(frozen=True)
class Part:
    id: str
    name: str
    kind: str = "COMPONENT"
    manufacturer_info: Optional[str] = None
    manufacturer_part_number: Optional[str] = None


@dataclass(frozen=True)
class Assembly:
    id: str
    name: str
    kind: str = "ASSEMBLY"
    category_code: Optional[str] = None
    subcategory_code: Optional[str] = None
    components: Tuple[ComponentRef, ...] = ()


@dataclass(frozen=True)
class CatalogSnapshot:
    assemblies: Mapping[str, Assembly] = field(default_factory=lambda: MappingProxyType({}))
    parts: Mapping[str, Part] = field(default_factory=lambda: MappingProxyType({}))

    def is_assembly(self, item_id: str) -> bool:
        return item_id in self.assemblies

    def is_part(self, item_id: str) -> bool:
        # Assembly interpretation wins when an id is in both maps
        return item_id in self.parts and item_id not in self.assemblies

    def duplicate_ids(self) -> List[str]:
        return sorted(set(self.assemblies) & set(self.parts))


# -------------------------------
# Document parsing
# -------------------------------
def _read_document(p: Path) -> dict:
    if not p.exists():
        raise CatalogLoadError(f"Catalog document not found: {p}")
    try:
        with open(p, encoding="utf-8") as f:
            if p.suffix.lower() in (".yml", ".yaml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise CatalogLoadError(f"{p.name} is not valid: {e}") from e
    except OSError as e:
        raise CatalogLoadError(f"Could not read {p}: {e}") from e
    if not isinstance(data, dict):
        raise CatalogLoadError(f"{p.name} must contain a mapping")
    return data


def _unwrap(doc: Mapping, key: str) -> Mapping:
    """Accept both {'assemblies': {...}} and the bare id mapping."""
    if not isinstance(doc, Mapping):
        raise CatalogLoadError(f"{key} document must be a mapping")
    inner = doc.get(key)
    if isinstance(inner, Mapping):
        return inner
    if key in doc:
        raise CatalogLoadError(f"'{key}' must be a mapping of id -> definition")
    return doc


def _opt_str(val) -> Optional[str]:
    if val is None:
        return None
    s = str(val).strip()
    return s or None


def coerce_quantity(val) -> int:
    """Normalize a quantity read from a document to a positive int.

    Integral floats (2.0 from JSON/YAML) and digit strings ("3") are accepted.
    Raises ValueError for anything else, bools and values below 1 included.
    """
    if isinstance(val, str) and val.strip().isdigit():
        val = int(val.strip())
    elif isinstance(val, float) and val.is_integer():
        val = int(val)
    if isinstance(val, bool) or not isinstance(val, int) or val < 1:
        raise ValueError(f"quantity must be a positive integer, got {val!r}")
    return val


def _parse_quantity(val, where: str) -> int:
    if isinstance(val, str):
        raise CatalogLoadError(f"{where}: quantity must be a positive integer, got {val!r}")
    try:
        return coerce_quantity(val)
    except ValueError as e:
        raise CatalogLoadError(f"{where}: {e}") from e


def _parse_assembly(asm_id: str, data) -> Assembly:
    if not isinstance(data, Mapping):
        raise CatalogLoadError(f"assembly '{asm_id}': definition must be a mapping")
    comps = data.get("components") or []
    if not isinstance(comps, list):
        raise CatalogLoadError(f"assembly '{asm_id}': 'components' must be a list")
    refs: List[ComponentRef] = []
    for idx, comp in enumerate(comps, start=1):
        where = f"assembly '{asm_id}' component {idx}"
        if not isinstance(comp, Mapping):
            raise CatalogLoadError(f"{where}: must be a mapping")
        ref = _opt_str(comp.get("part_id"))
        if ref is None:
            raise CatalogLoadError(f"{where}: 'part_id' is required")
        refs.append(ComponentRef(
            reference_id=ref,
            quantity=_parse_quantity(comp.get("quantity", 1), where),
            notes=_opt_str(comp.get("notes")),
        ))
    return Assembly(
        id=asm_id,
        name=_opt_str(data.get("name")) or asm_id,
        kind=_opt_str(data.get("type")) or "ASSEMBLY",
        category_code=_opt_str(data.get("category_code")),
        subcategory_code=_opt_str(data.get("subcategory_code")),
        components=tuple(refs),
    )


def _parse_part(part_id: str, data) -> Part:
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise CatalogLoadError(f"part '{part_id}': definition must be a mapping")
    return Part(
        id=part_id,
        name=_opt_str(data.get("name")) or part_id,
        kind=_opt_str(data.get("type")) or "COMPONENT",
        manufacturer_info=_opt_str(data.get("manufacturer_info")),
        manufacturer_part_number=_opt_str(data.get("manufacturer_part_number")),
    )


def build_snapshot(assemblies_doc: Mapping, parts_doc: Mapping) -> CatalogSnapshot:
    """Parse two catalog documents into an immutable snapshot.

    Raises CatalogLoadError on the first malformed entry.
    """
    asm_src = _unwrap(assemblies_doc, "assemblies")
    part_src = _unwrap(parts_doc, "parts")
    assemblies: Dict[str, Assembly] = {}
    for asm_id, data in asm_src.items():
        assemblies[str(asm_id)] = _parse_assembly(str(asm_id), data)
    parts: Dict[str, Part] = {}
    for part_id, data in part_src.items():
        parts[str(part_id)] = _parse_part(str(part_id), data)
    return CatalogSnapshot(assemblies=MappingProxyType(assemblies), parts=MappingProxyType(parts))


class CatalogStore:
    """Process-wide holder of the current catalog snapshot.

    A failed load leaves the store in the FAILED state with a diagnostic
    instead of raising, so callers can keep running and report why.
    """

    def __init__(self, snapshot: Optional[CatalogSnapshot] = None):
        self._lock = threading.Lock()
        self._snapshot: Optional[CatalogSnapshot] = snapshot
        self._state = READY if snapshot is not None else UNLOADED
        self._diagnostic: Optional[str] = None

    @classmethod
    def from_documents(cls, assemblies_doc: Mapping, parts_doc: Mapping) -> "CatalogStore":
        store = cls()
        store.load_documents(assemblies_doc, parts_doc)
        return store

    @classmethod
    def from_paths(cls, assemblies_path: Path, parts_path: Path) -> "CatalogStore":
        store = cls()
        store.load(assemblies_path, parts_path)
        return store

    # Load / reload

    def load(self, assemblies_path: Path, parts_path: Path) -> bool:
        """Load the catalog from two document paths. Returns True on success."""
        try:
            asm_doc = _read_document(Path(assemblies_path))
            part_doc = _read_document(Path(parts_path))
            snap = build_snapshot(asm_doc, part_doc)
        except CatalogLoadError as e:
            self._fail(str(e))
            return False
        self._swap(snap)
        return True

    def load_documents(self, assemblies_doc: Mapping, parts_doc: Mapping) -> bool:
        try:
            snap = build_snapshot(assemblies_doc, parts_doc)
        except CatalogLoadError as e:
            self._fail(str(e))
            return False
        self._swap(snap)
        return True

    def _swap(self, snap: CatalogSnapshot) -> None:
        with self._lock:
            self._snapshot = snap
            self._state = READY
            self._diagnostic = None
        dups = snap.duplicate_ids()
        if dups:
            logger.warning("Catalog ids defined as both assembly and part (assembly wins): %s", ", ".join(dups))
        logger.info("Loaded %d assemblies and %d parts", len(snap.assemblies), len(snap.parts))

    def _fail(self, message: str) -> None:
        with self._lock:
            self._snapshot = None
            self._state = FAILED
            self._diagnostic = message
        logger.error("Failed to load catalog: %s", message)

    # State

    @property
    def state(self) -> str:
        return self._state

    @property
    def diagnostic(self) -> Optional[str]:
        return self._diagnostic

    @property
    def ready(self) -> bool:
        return self._state == READY

    def current(self) -> Tuple[str, Optional[CatalogSnapshot], Optional[str]]:
        """Return (state, snapshot, diagnostic) from one locked read."""
        with self._lock:
            if self._state == UNLOADED:
                raise CatalogNotLoadedError("Catalog queried before load")
            return self._state, self._snapshot, self._diagnostic

    def snapshot(self) -> Optional[CatalogSnapshot]:
        """Return the current snapshot, or None when the last load failed."""
        return self.current()[1]

    def _require_snapshot(self) -> CatalogSnapshot:
        _, snap, diagnostic = self.current()
        if snap is None:
            raise CatalogError(f"Catalog unavailable: {diagnostic}")
        return snap

    # Queries

    def is_assembly(self, item_id: str) -> bool:
        return self._require_snapshot().is_assembly(item_id)

    def is_part(self, item_id: str) -> bool:
        return self._require_snapshot().is_part(item_id)

    def get_assembly(self, item_id: str) -> Optional[Assembly]:
        return self._require_snapshot().assemblies.get(item_id)

    def get_part(self, item_id: str) -> Optional[Part]:
        return self._require_snapshot().parts.get(item_id)

    def duplicate_ids(self) -> List[str]:
        return self._require_snapshot().duplicate_ids()

    def stats(self) -> dict:
        state, snap, diagnostic = self.current()
        if snap is None:
            return {"state": state, "diagnostic": diagnostic}
        return {
            "state": state,
            "assemblies": len(snap.assemblies),
            "parts": len(snap.parts),
            "duplicates": len(snap.duplicate_ids()),
        }
