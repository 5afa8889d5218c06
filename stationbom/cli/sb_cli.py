import sys
import os
import argparse
import logging
import pathlib
import json
import yaml

from stationbom import __version__
from stationbom.core.v1.config import (
    CONFIG_FILENAME,
    load_config,
    get_catalog_paths,
    get_fallback_rules,
    get_log_level,
)
from stationbom.core.v1.catalog import CatalogStore
from stationbom.core.v1.fallback import VariantFallback

# Expansion core API
from stationbom.core.v1.expander import (
    Selection,
    expand_item,
    generate_bom,
    compute_max_depth,
    deep_assemblies,
)
# Export views
from stationbom.core.v1.aggregate import (
    flatten,
    export_rows,
    summarize,
)
# Catalog lint
from stationbom.core.v1.validate import validate_catalog


class SBArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that prints full help on error instead of short usage."""
    def error(self, message):
        self.print_help()
        sys.stderr.write(f"\nError: {message}\n")
        raise SystemExit(2)


def _configure_logging(verbose: int, quiet: int) -> None:
    level = getattr(logging, get_log_level(), logging.WARNING)
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = min(level, logging.INFO)
    if quiet:
        level = logging.ERROR
    logging.basicConfig(level=level, format="[stationBOM] %(levelname)s %(name)s: %(message)s")


def _parse_selection(token: str) -> Selection:
    """Parse ID or ID:QTY from the command line."""
    ident, qty = token, 1
    if ":" in token:
        head, tail = token.rsplit(":", 1)
        if tail.isdigit():
            ident, qty = head, int(tail)
    if not ident.strip():
        raise ValueError(f"Invalid selection '{token}'")
    return Selection(identifier=ident.strip(), quantity=qty)


def _read_order_file(path: str) -> list:
    """Read an order file: a YAML/JSON list of items, or a mapping with an 'items' list."""
    p = pathlib.Path(path)
    with open(p) as f:
        if p.suffix.lower() == ".json":
            data = json.load(f)
        else:
            data = yaml.safe_load(f)
    if isinstance(data, dict):
        data = data.get("items")
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of items or a mapping with 'items'")
    return [Selection.from_mapping(it) for it in data]


def main(argv=None):
    # Root parser and global options
    env_format = os.getenv("SB_FORMAT", "human").lower()
    if env_format not in ("human", "json", "yaml"):
        env_format = "human"
    parser = SBArgumentParser(prog="sb", description="stationBOM CLI")
    parser.add_argument("--assemblies", dest="assemblies", default=os.getenv("SB_ASSEMBLIES"), help="Override assemblies document path")
    parser.add_argument("--parts", dest="parts", default=os.getenv("SB_PARTS"), help="Override parts document path")
    parser.add_argument(
        "-F", "--format", dest="format", choices=["human", "json", "yaml"], default=env_format,
        help="Output format (default from SB_FORMAT or 'human')"
    )
    parser.add_argument("-q", "--quiet", action="count", default=0, help="Decrease verbosity")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity")
    parser.add_argument("--version", action="version", version=f"stationBOM {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=False, parser_class=SBArgumentParser)

    # expand: one reference to a full tree
    expand_parser = subparsers.add_parser("expand", help="Expand one assembly or part to its full hierarchy")
    expand_parser.add_argument("item", help="Assembly or part id (e.g., T2-BODY-48-60-HA)")
    expand_parser.add_argument("--qty", type=int, default=1, help="Quantity (default 1)")

    # bom: an order's selections to a forest
    bom_parser = subparsers.add_parser("bom", help="Expand an order's selections into a BOM forest")
    bom_parser.add_argument("items", nargs="*", help="Selections as ID or ID:QTY")
    bom_parser.add_argument("--file", dest="file", default=None, help="YAML/JSON order file with a list of items")

    # export: aggregated rows for rendering
    export_parser = subparsers.add_parser("export", help="Aggregated, category-sorted BOM rows for an order")
    export_parser.add_argument("items", nargs="*", help="Selections as ID or ID:QTY")
    export_parser.add_argument("--file", dest="file", default=None, help="YAML/JSON order file with a list of items")
    export_parser.add_argument("--flat", action="store_true", help="Emit flattened hierarchical lines instead of aggregated rows")

    # depth / deep: catalog complexity audit
    depth_parser = subparsers.add_parser("depth", help="Longest assembly chain below an assembly")
    depth_parser.add_argument("item", help="Assembly id")
    deep_parser = subparsers.add_parser("deep", help="List assemblies with deep hierarchies")
    deep_parser.add_argument("--min-depth", dest="min_depth", type=int, default=2, help="Minimum depth to report (default 2)")

    # catalog: load state and counts
    subparsers.add_parser("catalog", help="Show catalog load state and counts")

    # validate: offline catalog lint
    validate_parser = subparsers.add_parser("validate", help="Lint the catalog documents")
    validate_parser.add_argument("--strict", action="store_true", help="Treat warnings as errors (non-zero exit)")

    args = parser.parse_args(argv)
    _configure_logging(args.verbose, args.quiet)

    if not args.command:
        parser.print_help()
        sys.exit(2)

    # Helper: normalize format
    def _fmt() -> str:
        return args.format

    def _dump(obj) -> None:
        if _fmt() == "json":
            print(json.dumps(obj, indent=2))
        else:
            print(yaml.safe_dump(obj, sort_keys=False))

    try:
        config = load_config()
        asm_path, parts_path = get_catalog_paths(config)
        fallback = VariantFallback.from_config(get_fallback_rules(config))
    except Exception as e:
        print(f"[stationBOM] Error: invalid {CONFIG_FILENAME}: {e}")
        sys.exit(1)
    if args.assemblies:
        asm_path = pathlib.Path(args.assemblies).expanduser().resolve()
    if args.parts:
        parts_path = pathlib.Path(args.parts).expanduser().resolve()

    def _store() -> CatalogStore:
        return CatalogStore.from_paths(asm_path, parts_path)

    def _selections() -> list:
        sels = []
        try:
            if getattr(args, "file", None):
                sels.extend(_read_order_file(args.file))
            sels.extend(_parse_selection(t) for t in (args.items or []))
        except Exception as e:
            print(f"[stationBOM] Error: {e}")
            sys.exit(1)
        if not sels:
            print("[stationBOM] Error: No selections provided. Pass ID[:QTY] arguments or --file.")
            sys.exit(2)
        return sels

    def _print_tree(node, indent_base: int = 0) -> None:
        for n in node.walk():
            indent = "  " * (n.level + indent_base)
            name = f" [{n.name}]" if n.name and n.name != n.id else ""
            via = f" (via {n.requested_id})" if n.requested_id else ""
            print(f"{indent}- {n.quantity} x {n.id}{name} {n.kind.value}{via}")

    def _report_unavailable(diagnostic, passthrough=()) -> None:
        print(f"[stationBOM] Catalog unavailable: {diagnostic}")
        for sel in passthrough:
            print(f"  - {sel.quantity} x {sel.identifier} (unexpanded)")

    def cmd_expand(args):
        store = _store()
        try:
            node = expand_item(store, args.item, args.qty, fallback=fallback)
        except ValueError as e:
            print(f"[stationBOM] Error: {e}")
            sys.exit(2)
        if node is None:
            _report_unavailable(store.current()[2])
            sys.exit(1)
        if _fmt() == "human":
            print(f"[stationBOM] Hierarchy for '{args.item}' x {args.qty}:")
            _print_tree(node)
        else:
            _dump(node.to_dict())

    def cmd_bom(args):
        sels = _selections()
        store = _store()
        try:
            res = generate_bom(store, sels, fallback=fallback)
        except ValueError as e:
            print(f"[stationBOM] Error: {e}")
            sys.exit(2)
        if _fmt() != "human":
            _dump(res.to_dict())
        elif res.diagnostic:
            _report_unavailable(res.diagnostic, res.passthrough)
        else:
            print(f"[stationBOM] BOM for {len(sels)} selection(s):")
            for root in res.forest:
                _print_tree(root)
        if res.diagnostic:
            sys.exit(1)

    def cmd_export(args):
        sels = _selections()
        store = _store()
        try:
            res = generate_bom(store, sels, fallback=fallback)
        except ValueError as e:
            print(f"[stationBOM] Error: {e}")
            sys.exit(2)
        if res.diagnostic:
            if _fmt() == "human":
                _report_unavailable(res.diagnostic, res.passthrough)
            else:
                _dump(res.to_dict())
            sys.exit(1)
        lines = flatten(res.forest, res.sources)
        summary = summarize(lines)
        if args.flat:
            rows = [ln.to_dict() for ln in lines]
        else:
            rows = [r.to_dict() for r in export_rows(res.forest, res.sources)]
        if _fmt() != "human":
            _dump({"rows": rows, "summary": summary.to_dict()})
            return
        for r in rows:
            indent = "  " * r.get("level", 0) if args.flat else ""
            srcs = r.get("sources")
            src_s = f" <{', '.join(srcs)}>" if srcs else ""
            print(f"{indent}{r['quantity']:>6} x {r['identifier']} [{r['category']}] {r['description']}{src_s}")
        print(
            f"[stationBOM] {summary.total_items} lines, total quantity {summary.total_quantity}, "
            f"max depth {summary.max_depth}, unknown {summary.unknown_count}"
        )

    def cmd_depth(args):
        store = _store()
        if not store.ready:
            _report_unavailable(store.current()[2])
            sys.exit(1)
        if not store.is_assembly(args.item):
            print(f"[stationBOM] Error: '{args.item}' is not an assembly")
            sys.exit(1)
        d = compute_max_depth(store, args.item)
        if _fmt() == "human":
            print(f"[stationBOM] {args.item}: depth {d}")
        else:
            _dump({"id": args.item, "depth": d})

    def cmd_deep(args):
        store = _store()
        if not store.ready:
            _report_unavailable(store.current()[2])
            sys.exit(1)
        rows = deep_assemblies(store, min_depth=args.min_depth)
        if _fmt() != "human":
            _dump(rows)
        elif not rows:
            print(f"[stationBOM] No assemblies with depth >= {args.min_depth}")
        else:
            for r in rows:
                print(f"{r['depth']:>3}  {r['id']}  {r['name']}")

    def cmd_catalog(args):
        store = _store()
        stats = store.stats()
        stats["assemblies_path"] = str(asm_path)
        stats["parts_path"] = str(parts_path)
        if _fmt() != "human":
            _dump(stats)
        elif stats["state"] == "ready":
            print(f"[stationBOM] Catalog ready: {stats['assemblies']} assemblies, {stats['parts']} parts, {stats['duplicates']} duplicate ids")
        else:
            _report_unavailable(stats.get("diagnostic"))
        if stats["state"] != "ready":
            sys.exit(1)

    def cmd_validate(args):
        result = validate_catalog(asm_path, parts_path, fallback=fallback)
        errors = int(result.get("errors", 0))
        warnings = int(result.get("warnings", 0))
        if _fmt() != "human":
            _dump(result)
        else:
            print(f"[stationBOM] Validation results for {asm_path.parent}")
            print(f"Errors: {errors}, Warnings: {warnings}")
            for it in result.get("issues", []):
                sev = it.get("severity", "?")
                code = it.get("code", "?")
                path = it.get("path", "")
                msg = it.get("message", "")
                print(f" - [{sev.upper()}] {code} :: {path} :: {msg}")
        if errors > 0 or (args.strict and warnings > 0):
            sys.exit(1)

    DISPATCH = {
        "expand": cmd_expand,
        "bom": cmd_bom,
        "export": cmd_export,
        "depth": cmd_depth,
        "deep": cmd_deep,
        "catalog": cmd_catalog,
        "validate": cmd_validate,
    }
    DISPATCH[args.command](args)


if __name__ == "__main__":
    main()
