from __future__ import annotations
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from stationbom.core.v1.aggregate import (
    AggregatedLineItem,
    LineItem,
    aggregate,
    export_rows,
    flatten,
    sort_by_category_priority,
    summarize,
)
from stationbom.core.v1.catalog import CatalogStore
from stationbom.core.v1.expander import Selection, expand_item, generate_bom


def _sink_store() -> CatalogStore:
    return CatalogStore.from_documents(
        {
            "SINK-1B": {
                "name": "Sink 1 basin",
                "category_code": "SINK",
                "components": [
                    {"part_id": "BASIN-X", "quantity": 1},
                    {"part_id": "LEG-KIT", "quantity": 4},
                ],
            },
            "LEG-KIT": {"name": "Leg kit", "category_code": "legs", "components": []},
            "BASIN-KIT": {
                "name": "Basin kit",
                "category_code": "BASIN",
                "components": [{"part_id": "BASIN-X", "quantity": 2}, {"part_id": "DRAIN", "quantity": 1}],
            },
        },
        {"BASIN-X": {"name": "Basin X"}, "DRAIN": {"name": "Drain"}},
    )


def _line(ident: str, qty: int, category: str = "HARDWARE", source: str = "SINK") -> LineItem:
    return LineItem(identifier=ident, description=ident.lower(), quantity=qty, category=category, source=source)


def test_flatten_emits_every_node_in_pre_order():
    root = expand_item(_sink_store(), "SINK-1B", 2)
    lines = flatten([root])
    assert [(ln.identifier, ln.quantity, ln.level) for ln in lines] == [
        ("SINK-1B", 2, 0),
        ("BASIN-X", 2, 1),
        ("LEG-KIT", 8, 1),
    ]
    assert [ln.parent_id for ln in lines] == [None, "SINK-1B", "SINK-1B"]
    assert {ln.source for ln in lines} == {"SINK-1B"}
    assert lines[1].kind == "PART"

    # No duplicate ids, so aggregation leaves the quantities alone
    agg = aggregate(lines)
    assert [(a.identifier, a.quantity) for a in agg] == [("SINK-1B", 2), ("BASIN-X", 2), ("LEG-KIT", 8)]
    assert agg[2].category == "LEGS"


def test_aggregate_sums_duplicates_across_trees_and_unions_sources():
    store = _sink_store()
    res = generate_bom(store, [Selection("SINK-1B", 1, source="SINK"), Selection("BASIN-KIT", 2, source="BASIN")])
    lines = flatten(res.forest, res.sources)
    agg = {a.identifier: a for a in aggregate(lines)}
    # 1 from the sink + 2*2 from the basin kit
    assert agg["BASIN-X"].quantity == 5
    assert agg["BASIN-X"].contributing_sources == frozenset({"SINK", "BASIN"})
    assert agg["DRAIN"].quantity == 2
    assert agg["DRAIN"].contributing_sources == frozenset({"BASIN"})
    assert len(agg) == 5


def test_aggregate_keeps_first_category_and_description():
    items = [
        _line("BOLT", 2, category="hardware"),
        LineItem(identifier="BOLT", description="other", quantity=3, category="ACCESSORY", source="ACC"),
    ]
    (bolt,) = aggregate(items)
    assert bolt.quantity == 5
    assert bolt.category == "HARDWARE"
    assert bolt.description == "bolt"
    assert bolt.contributing_sources == frozenset({"SINK", "ACC"})


def test_aggregate_accepts_flat_bom_mappings():
    rows = aggregate([
        {"partNumber": "T2-OA-MS-1026", "name": "Monitor arm", "quantity": 1, "itemType": "accessory"},
        {"assemblyId": "T2-OA-MS-1026", "quantity": 2, "category": "ACCESSORY", "itemType": "ACCESSORY"},
        {"id": "LOOSE", "quantity": 1},
    ])
    assert [(r.identifier, r.quantity, r.category) for r in rows] == [
        ("T2-OA-MS-1026", 3, "ACCESSORY"),
        ("LOOSE", 1, "UNCATEGORIZED"),
    ]
    assert rows[0].description == "Monitor arm"
    assert rows[0].contributing_sources == frozenset({"accessory", "ACCESSORY"})
    assert rows[1].contributing_sources == frozenset({"UNKNOWN"})


def test_sort_by_category_priority():
    items = aggregate([
        _line("H-2", 1, "HARDWARE"),
        _line("B-1", 1, "BASIN"),
        _line("H-1", 1, "HARDWARE"),
        _line("S-1", 1, "SINK"),
        _line("Z-1", 1, "MYSTERY"),
        _line("U-1", 1, "UNCATEGORIZED"),
        _line("F-1", 1, "FAUCET"),
    ])
    ordered = sort_by_category_priority(items)
    assert [i.identifier for i in ordered] == ["S-1", "B-1", "F-1", "H-1", "H-2", "U-1", "Z-1"]
    # Input untouched
    assert items[0].identifier == "H-2"


def test_aggregate_then_sort_is_idempotent():
    store = _sink_store()
    res = generate_bom(store, [Selection("SINK-1B", 3), Selection("BASIN-KIT", 1)])
    once = sort_by_category_priority(aggregate(flatten(res.forest, res.sources)))
    twice = sort_by_category_priority(aggregate(once))
    assert twice == once
    assert sorted(aggregate(sort_by_category_priority(aggregate(flatten(res.forest)))), key=lambda a: a.identifier) == \
        sorted(aggregate(flatten(res.forest)), key=lambda a: a.identifier)


def test_export_rows_from_forest_or_flat_items():
    store = _sink_store()
    res = generate_bom(store, [Selection("BASIN-KIT", 1, source="BASIN"), Selection("SINK-1B", 1, source="SINK")])
    rows = export_rows(res.forest, res.sources)
    assert [r.identifier for r in rows] == ["SINK-1B", "BASIN-KIT", "LEG-KIT", "BASIN-X", "DRAIN"]
    assert all(isinstance(r, AggregatedLineItem) for r in rows)

    flat = export_rows([{"partNumber": "X", "quantity": 1, "category": "SINK"}])
    assert flat[0].identifier == "X"
    assert export_rows([]) == []


def test_summarize_counts_levels_and_kinds():
    store = CatalogStore.from_documents(
        {"A": {"components": [{"part_id": "P", "quantity": 2}, {"part_id": "GONE", "quantity": 1}]}},
        {"P": {}},
    )
    lines = flatten([expand_item(store, "A", 3)])
    s = summarize(lines)
    assert s.total_items == 3
    assert s.total_quantity == 3 + 6 + 3
    assert s.max_depth == 1
    assert s.items_by_level == {0: 1, 1: 2}
    assert (s.assemblies_count, s.parts_count, s.unknown_count) == (1, 1, 1)
    assert s.to_dict()["unknown_count"] == 1


def test_flat_quantities_are_summed_as_integers():
    (row,) = aggregate([
        {"partNumber": "P1", "quantity": "2"},
        {"partNumber": "P1", "quantity": "3"},
        {"partNumber": "P1", "quantity": 4.0},
    ])
    assert row.quantity == 9
    assert isinstance(row.quantity, int)


@pytest.mark.parametrize("qty", [None, 0, -4, True, 1.5, "two"])
def test_flat_items_with_bad_quantity_raise(qty):
    item = {"partNumber": "P2"}
    if qty is not None:
        item["quantity"] = qty
    with pytest.raises(ValueError):
        aggregate([item])
    with pytest.raises(ValueError):
        export_rows([{"partNumber": "P3", "quantity": 1}, item])


def test_export_rows_rejects_trees_mixed_with_flat_items():
    root = expand_item(_sink_store(), "SINK-1B")
    with pytest.raises(ValueError):
        export_rows([root, {"partNumber": "X", "quantity": 1}])
    with pytest.raises(ValueError):
        aggregate([root])
