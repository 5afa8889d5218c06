from __future__ import annotations
from pathlib import Path
from typing import Dict, List, Mapping, Optional
import json

import yaml

from .fallback import DEFAULT_FALLBACK, VariantFallback


# -------------------------------
# Offline catalog lint
#   Runtime expansion tolerates bad data; this pass reports it.
# -------------------------------


def _issue(issues: List[Dict], severity: str, code: str, path: str, message: str) -> None:
    issues.append({"severity": severity, "code": code, "path": path, "message": message})


def _load_doc(p: Path, key: str, issues: List[Dict]) -> Optional[Mapping]:
    if not p.exists():
        _issue(issues, "error", "CAT_DOC_MISSING", str(p), f"Missing {key} document")
        return None
    try:
        with open(p, encoding="utf-8") as f:
            if p.suffix.lower() in (".yml", ".yaml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except Exception as e:
        _issue(issues, "error", "CAT_DOC_INVALID", str(p), f"{p.name} could not be parsed: {e}")
        return None
    if not isinstance(data, dict):
        _issue(issues, "error", "CAT_DOC_INVALID", str(p), f"{p.name} must contain a mapping")
        return None
    return data


def _entries(doc: Mapping, key: str, issues: List[Dict]) -> Dict[str, object]:
    inner = doc.get(key) if key in doc else doc
    if not isinstance(inner, Mapping):
        _issue(issues, "error", "CAT_DOC_INVALID", key, f"'{key}' must be a mapping of id -> definition")
        return {}
    return {str(k): v for k, v in inner.items()}


def _scan_parts(parts: Dict[str, object], issues: List[Dict]) -> None:
    for part_id, data in sorted(parts.items()):
        if data is not None and not isinstance(data, Mapping):
            _issue(issues, "error", "CAT_PART_NOT_MAP", f"parts/{part_id}", "Part definition must be a mapping")


def _scan_assemblies(
    assemblies: Dict[str, object],
    parts: Dict[str, object],
    fallback: VariantFallback,
    issues: List[Dict],
) -> Dict[str, List[str]]:
    """Validate assembly entries; return assembly -> child assembly ids for cycle detection."""
    children_of: Dict[str, List[str]] = {}

    def _exists(ref: str) -> bool:
        return ref in assemblies or ref in parts

    for asm_id, data in sorted(assemblies.items()):
        where = f"assemblies/{asm_id}"
        if not isinstance(data, Mapping):
            _issue(issues, "error", "CAT_ASM_NOT_MAP", where, "Assembly definition must be a mapping")
            continue
        if asm_id in parts:
            _issue(issues, "warning", "CAT_DUPLICATE_ID", where,
                   f"'{asm_id}' is defined as both assembly and part; assembly takes precedence")
        comps = data.get("components")
        if comps is None:
            comps = []
        if not isinstance(comps, list):
            _issue(issues, "error", "CAT_ASM_COMPONENTS_NOT_LIST", where, "'components' must be a list")
            continue
        if not comps:
            _issue(issues, "warning", "CAT_ASM_EMPTY", where, "Assembly has no components")
        children: List[str] = []
        seen: Dict[str, int] = {}
        for idx, comp in enumerate(comps, start=1):
            if not isinstance(comp, Mapping):
                _issue(issues, "error", "CAT_COMP_NOT_MAP", where, f"component {idx}: must be a mapping/object")
                continue
            ref = comp.get("part_id")
            if not isinstance(ref, str) or not ref.strip():
                _issue(issues, "error", "CAT_COMP_PART_ID_REQUIRED", where,
                       f"component {idx}: 'part_id' is required and must be a string")
                continue
            ref = ref.strip()
            qty = comp.get("quantity", 1)
            if (
                isinstance(qty, bool)
                or not isinstance(qty, (int, float))
                or (isinstance(qty, float) and not qty.is_integer())
                or qty < 1
            ):
                _issue(issues, "error", "CAT_COMP_QTY_INVALID", where,
                       f"component {idx}: quantity must be a positive integer, got {qty!r}")
            first = seen.get(ref)
            if first is None:
                seen[ref] = idx
            else:
                _issue(issues, "warning", "CAT_COMP_DUPLICATE", where,
                       f"component {idx}: '{ref}' already listed at component {first}")
            if not _exists(ref):
                substitute = fallback.resolve_fallback(ref, _exists)
                if substitute is None:
                    _issue(issues, "error", "CAT_COMP_REF_MISSING", where,
                           f"component {idx}: '{ref}' is neither an assembly nor a part")
                else:
                    _issue(issues, "warning", "CAT_COMP_REF_FALLBACK", where,
                           f"component {idx}: '{ref}' only resolves through variant '{substitute}'")
            if ref in assemblies:
                children.append(ref)
        children_of[asm_id] = children
    return children_of


def _scan_cycles(children_of: Dict[str, List[str]], issues: List[Dict]) -> None:
    visited: set = set()
    stack: set = set()
    path: List[str] = []
    emitted: set = set()

    def _report_cycle(cycle_nodes: List[str]):
        key = frozenset(cycle_nodes)
        if key in emitted:
            return
        emitted.add(key)
        cycle_str = " -> ".join(cycle_nodes + [cycle_nodes[0]])
        _issue(issues, "error", "CAT_ASM_CYCLE", f"assemblies/{cycle_nodes[0]}",
               f"Cyclic assembly dependency detected: {cycle_str}")

    def _dfs(u: str):
        visited.add(u)
        stack.add(u)
        path.append(u)
        for v in children_of.get(u, []):
            if v not in children_of:
                continue
            if v not in visited:
                _dfs(v)
            elif v in stack:
                _report_cycle(path[path.index(v):])
        path.pop()
        stack.remove(u)

    for node in sorted(children_of):
        if node not in visited:
            _dfs(node)


def validate_documents(
    assemblies_doc: Mapping,
    parts_doc: Mapping,
    *,
    fallback: Optional[VariantFallback] = None,
) -> Dict:
    """Lint already-parsed catalog documents.

    Returns a dict: { errors: int, warnings: int, issues: [ {severity, code, path, message} ] }
    """
    issues: List[Dict] = []
    assemblies = _entries(assemblies_doc, "assemblies", issues)
    parts = _entries(parts_doc, "parts", issues)
    _scan_parts(parts, issues)
    children_of = _scan_assemblies(assemblies, parts, fallback if fallback is not None else DEFAULT_FALLBACK, issues)
    _scan_cycles(children_of, issues)
    return _result(issues)


def validate_catalog(
    assemblies_path: Path,
    parts_path: Path,
    *,
    fallback: Optional[VariantFallback] = None,
) -> Dict:
    """Lint the catalog documents on disk, including whether they parse at all."""
    issues: List[Dict] = []
    asm_doc = _load_doc(Path(assemblies_path), "assemblies", issues)
    part_doc = _load_doc(Path(parts_path), "parts", issues)
    if asm_doc is None or part_doc is None:
        return _result(issues)
    res = validate_documents(asm_doc, part_doc, fallback=fallback)
    return _result(issues + res["issues"])


def _result(issues: List[Dict]) -> Dict:
    errors = sum(1 for i in issues if i.get("severity") == "error")
    warnings = sum(1 for i in issues if i.get("severity") == "warning")
    return {"errors": errors, "warnings": warnings, "issues": issues}
