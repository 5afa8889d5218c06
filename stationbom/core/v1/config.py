import pathlib
import yaml
import os

CONFIG_FILENAME = ".stationbom.yml"

# -------------------------------
# Catalog location (YAML-driven)
# -------------------------------
# The catalog is two documents, normally resources/assemblies.json and
# resources/parts.json. .stationbom.yml may point elsewhere:
# catalog:
#   dir: <directory holding both documents>
#   assemblies: <path, relative to dir unless absolute>
#   parts: <path, relative to dir unless absolute>
DEFAULT_CATALOG_DIR = "resources"
DEFAULT_ASSEMBLIES_FILENAME = "assemblies.json"
DEFAULT_PARTS_FILENAME = "parts.json"

# -------------------------------
# Variant fallback rules
# -------------------------------
# fallback:
#   rules:
#     - pattern: <regex the bare id must match>
#       marker: <suffix the variant tag is inserted before; optional>
#       tags: [GREEN, BLACK, ...]
# Pegboard kits are ordered without a color but only exist in colored flavors.
DEFAULT_FALLBACK_RULES = [
    {
        "pattern": r"T2-ADW-PB-.*-KIT$",
        "marker": "-KIT",
        "tags": ["GREEN", "BLACK", "BLUE", "WHITE", "GREY", "RED", "YELLOW", "ORANGE"],
    },
]


def _resolve_config_path() -> pathlib.Path:
    """Resolve the path to .stationbom.yml with environment overrides.

    Precedence:
      1) SB_CONFIG_FILE = absolute or relative path to the config file
      2) SB_CONFIG_DIR  = directory containing the config file
      3) Fallback to CWD: ./.stationbom.yml
    """
    env_file = os.environ.get("SB_CONFIG_FILE")
    if env_file:
        return pathlib.Path(env_file).expanduser().resolve()
    env_dir = os.environ.get("SB_CONFIG_DIR")
    if env_dir:
        return pathlib.Path(env_dir).expanduser().resolve() / CONFIG_FILENAME
    return pathlib.Path(CONFIG_FILENAME).expanduser().resolve()


def load_config() -> dict:
    """Read .stationbom.yml; a missing file means all defaults."""
    config_path = _resolve_config_path()
    if not config_path.exists():
        return {}
    with open(config_path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{config_path} must contain a YAML mapping")
    return data


def get_catalog_paths(config: dict | None = None) -> tuple[pathlib.Path, pathlib.Path]:
    """Return (assemblies_path, parts_path) for the configured catalog.

    SB_CATALOG_DIR overrides catalog.dir. Relative directories are resolved
    against the directory holding the config file.
    """
    if config is None:
        config = load_config()
    cat = config.get("catalog") or {}
    if not isinstance(cat, dict):
        raise ValueError("catalog must be a mapping in .stationbom.yml")
    base = _resolve_config_path().parent
    cat_dir = os.environ.get("SB_CATALOG_DIR") or cat.get("dir") or DEFAULT_CATALOG_DIR
    root = pathlib.Path(str(cat_dir)).expanduser()
    if not root.is_absolute():
        root = base / root
    asm = pathlib.Path(str(cat.get("assemblies") or DEFAULT_ASSEMBLIES_FILENAME)).expanduser()
    parts = pathlib.Path(str(cat.get("parts") or DEFAULT_PARTS_FILENAME)).expanduser()
    if not asm.is_absolute():
        asm = root / asm
    if not parts.is_absolute():
        parts = root / parts
    return asm.resolve(), parts.resolve()


def get_fallback_rules(config: dict | None = None) -> list[dict]:
    """Return the variant fallback rules, defaulting to the pegboard kit rule.

    An explicit empty list disables fallback resolution.
    """
    if config is None:
        config = load_config()
    fb = config.get("fallback")
    if fb is None:
        return [dict(r) for r in DEFAULT_FALLBACK_RULES]
    if not isinstance(fb, dict):
        raise ValueError("fallback must be a mapping in .stationbom.yml")
    rules = fb.get("rules")
    if rules is None:
        return [dict(r) for r in DEFAULT_FALLBACK_RULES]
    if not isinstance(rules, list):
        raise ValueError("fallback.rules must be a list")
    out = []
    for idx, rule in enumerate(rules, start=1):
        if not isinstance(rule, dict):
            raise ValueError(f"fallback.rules item {idx}: must be a mapping")
        if not rule.get("pattern"):
            raise ValueError(f"fallback.rules item {idx}: 'pattern' is required")
        tags = rule.get("tags")
        if not isinstance(tags, list) or not tags:
            raise ValueError(f"fallback.rules item {idx}: 'tags' must be a non-empty list")
        out.append(dict(rule))
    return out


def get_log_level() -> str:
    """Return the log level name from SB_LOG_LEVEL, defaulting to WARNING."""
    return os.environ.get("SB_LOG_LEVEL", "WARNING").upper()
