from __future__ import annotations
import json
import logging
import sys
from pathlib import Path

import pytest

# Ensure project root on sys.path so 'stationbom' is importable when running pytest
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from stationbom.core.v1.catalog import (
    FAILED,
    READY,
    UNLOADED,
    CatalogError,
    CatalogNotLoadedError,
    CatalogStore,
)
from stationbom.core.v1.expander import Selection, expand_item, generate_bom, expand_bom_list


def _write_json(p: Path, data) -> Path:
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(data), encoding="utf-8")
    return p


def _catalog_files(root: Path) -> tuple[Path, Path]:
    asm = _write_json(root / "assemblies.json", {
        "assemblies": {
            "T2-BODY-48": {
                "name": "Sink Body 48in",
                "type": "SIMPLE",
                "category_code": "SINK",
                "can_order": True,
                "components": [{"part_id": "P-FRAME", "quantity": 1, "notes": "welded"}],
            },
        }
    })
    parts = _write_json(root / "parts.json", {
        "parts": {
            "P-FRAME": {"name": "Frame", "type": "COMPONENT", "manufacturer_info": "Torvan", "status": "ACTIVE"},
        }
    })
    return asm, parts


def test_load_wrapped_json_documents(tmp_path: Path):
    asm, parts = _catalog_files(tmp_path)
    store = CatalogStore.from_paths(asm, parts)
    assert store.state == READY
    assert store.diagnostic is None
    assert store.is_assembly("T2-BODY-48")
    assert store.is_part("P-FRAME")
    assert not store.is_part("T2-BODY-48")
    body = store.get_assembly("T2-BODY-48")
    assert body.category_code == "SINK"
    assert body.components[0].reference_id == "P-FRAME"
    assert body.components[0].notes == "welded"
    assert store.get_part("P-FRAME").manufacturer_info == "Torvan"
    assert store.stats() == {"state": READY, "assemblies": 1, "parts": 1, "duplicates": 0}


def test_load_bare_yaml_documents(tmp_path: Path):
    (tmp_path / "assemblies.yml").write_text(
        "KIT-A:\n  name: Kit A\n  components:\n    - part_id: P-1\n      quantity: 2\n",
        encoding="utf-8",
    )
    (tmp_path / "parts.yaml").write_text("P-1:\n  name: Bolt\n", encoding="utf-8")
    store = CatalogStore.from_paths(tmp_path / "assemblies.yml", tmp_path / "parts.yaml")
    assert store.ready
    assert store.get_assembly("KIT-A").components[0].quantity == 2
    assert store.get_part("P-1").kind == "COMPONENT"


def test_query_before_load_is_a_contract_violation():
    store = CatalogStore()
    assert store.state == UNLOADED
    with pytest.raises(CatalogNotLoadedError):
        store.is_assembly("X")
    with pytest.raises(CatalogNotLoadedError):
        expand_item(store, "X")


def test_missing_document_degrades_without_raising(tmp_path: Path):
    asm, _ = _catalog_files(tmp_path)
    store = CatalogStore.from_paths(asm, tmp_path / "nope.json")
    assert store.state == FAILED
    assert "nope.json" in store.diagnostic
    assert not store.ready
    # Expansion short-circuits instead of raising
    assert expand_item(store, "T2-BODY-48") is None
    assert expand_bom_list(store, [Selection("T2-BODY-48", 2)]) == []


def test_failed_catalog_passes_selections_through(tmp_path: Path):
    bad = tmp_path / "assemblies.json"
    bad.write_text("{not json", encoding="utf-8")
    _, parts = _catalog_files(tmp_path / "ok")
    store = CatalogStore.from_paths(bad, parts)
    assert store.state == FAILED

    res = generate_bom(store, [{"id": "T2-BODY-48", "quantity": 3}, Selection("KIT-B")])
    assert res.forest == ()
    assert [s.identifier for s in res.passthrough] == ["T2-BODY-48", "KIT-B"]
    assert res.passthrough[0].quantity == 3
    assert res.diagnostic == store.diagnostic


@pytest.mark.parametrize("qty", [0, -1, 1.5, "two", True])
def test_bad_component_quantity_fails_load(qty):
    store = CatalogStore.from_documents(
        {"A": {"name": "A", "components": [{"part_id": "P", "quantity": qty}]}},
        {"P": {"name": "P"}},
    )
    assert store.state == FAILED
    assert "quantity" in store.diagnostic


def test_components_must_be_a_list():
    store = CatalogStore.from_documents({"A": {"components": {"part_id": "P"}}}, {})
    assert store.state == FAILED
    with pytest.raises(CatalogError):
        store.is_assembly("A")


def test_duplicate_id_resolves_as_assembly():
    store = CatalogStore.from_documents(
        {"DUP": {"name": "Dup assembly", "components": []}},
        {"DUP": {"name": "Dup part"}},
    )
    assert store.is_assembly("DUP")
    assert not store.is_part("DUP")
    assert store.duplicate_ids() == ["DUP"]
    node = expand_item(store, "DUP")
    assert node.is_assembly
    assert node.name == "Dup assembly"


def test_reload_swaps_snapshot_atomically():
    store = CatalogStore.from_documents({"A": {"name": "A"}}, {})
    first = store.snapshot()
    assert store.load_documents({"B": {"name": "B"}}, {"P": {}})
    second = store.snapshot()
    assert first is not second
    # The old snapshot is untouched by the reload
    assert "A" in first.assemblies and "B" not in first.assemblies
    assert store.is_assembly("B") and not store.is_assembly("A")

    # A failed reload keeps no partial data
    assert not store.load_documents({"C": "not a mapping"}, {})
    assert store.state == FAILED
    assert store.snapshot() is None


def test_snapshot_maps_are_read_only():
    store = CatalogStore.from_documents({"A": {"name": "A"}}, {"P": {"name": "P"}})
    snap = store.snapshot()
    with pytest.raises(TypeError):
        snap.parts["Q"] = None  # type: ignore[index]


def test_current_reads_state_snapshot_and_diagnostic_together():
    store = CatalogStore.from_documents({"A": {"name": "A"}}, {})
    state, snap, diagnostic = store.current()
    assert (state, diagnostic) == (READY, None)
    assert snap is store.snapshot()

    store.load_documents({"A": "not a mapping"}, {})
    state, snap, diagnostic = store.current()
    assert state == FAILED and snap is None
    assert "mapping" in diagnostic
    with pytest.raises(CatalogNotLoadedError):
        CatalogStore().current()


def test_reload_between_reads_keeps_the_failed_diagnostic(monkeypatch):
    store = CatalogStore.from_documents({"A": "not a mapping"}, {})
    assert store.state == FAILED
    read_once = store.current

    def read_then_reload():
        seen = read_once()
        # Another caller fixes the catalog right after this read
        store.load_documents({"A": {"name": "A"}}, {})
        return seen

    monkeypatch.setattr(store, "current", read_then_reload)
    res = generate_bom(store, [Selection("A", 2)])
    assert res.forest == ()
    assert [s.identifier for s in res.passthrough] == ["A"]
    assert res.diagnostic is not None and "mapping" in res.diagnostic
    assert store.state == READY


def test_failed_load_is_logged_once(caplog):
    with caplog.at_level(logging.DEBUG, logger="stationbom"):
        store = CatalogStore.from_documents({"A": "not a mapping"}, {})
        for _ in range(3):
            assert expand_item(store, "A") is None
        generate_bom(store, [Selection("A")])
    errors = [r for r in caplog.records if r.levelno >= logging.WARNING]
    assert len(errors) == 1
    assert errors[0].levelno == logging.ERROR
    assert errors[0].name == "stationbom.core.v1.catalog"
