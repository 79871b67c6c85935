import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from importlib import resources as importlib_resources
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Union

from warcio.timeutils import timestamp_to_datetime

from .errors import ConfigError

FORCED_EXTENSIONS_RESOURCE = "forced.extensions"
TIMESTAMP_RE = re.compile(r"^\d{4,14}$")


# -------------------- Settings --------------------


@dataclass
class Settings:
    output_dir: str = "."
    inputs: List[str] = field(default_factory=list)
    warc_base: str = ""

    # Remote index
    cdx_server: Optional[str] = None
    cdx_url: Optional[str] = None

    # Capture window: after is inclusive, before is exclusive
    after: Optional[datetime] = None
    before: Optional[datetime] = None

    dry_run: bool = False
    workers: int = 4
    timeout: float = 30.0
    forced_extensions: Dict[str, str] = field(default_factory=dict)
    verbose: bool = False


# -------------------- Forced extensions --------------------


def parse_forced_extensions(text: str) -> Dict[str, str]:
    table: Dict[str, str] = {}
    for lineno, line in enumerate(text.splitlines(), 1):
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        fields = line.split()
        if len(fields) != 2:
            raise ConfigError(f"forced extensions line {lineno}: {line!r}")
        table[fields[0].lower()] = fields[1].lstrip(".")
    return table


def load_forced_extensions(
    overrides: Optional[Mapping[str, str]] = None,
) -> Mapping[str, str]:
    try:
        text = (
            importlib_resources.files(__package__)
            .joinpath(FORCED_EXTENSIONS_RESOURCE)
            .read_text(encoding="utf-8")
        )
    except (FileNotFoundError, ModuleNotFoundError) as e:
        raise ConfigError(f"{FORCED_EXTENSIONS_RESOURCE} resource missing") from e
    table = parse_forced_extensions(text)
    for media_type, ext in (overrides or {}).items():
        table[media_type.lower()] = ext.lstrip(".")
    return MappingProxyType(table)


def parse_forced_extension_arg(value: str) -> Dict[str, str]:
    if "=" not in value:
        raise ConfigError(f"expected TYPE=EXT, got {value!r}")
    media_type, ext = value.split("=", 1)
    if not media_type.strip() or not ext.strip():
        raise ConfigError(f"expected TYPE=EXT, got {value!r}")
    return {media_type.strip().lower(): ext.strip()}


# -------------------- Timestamps --------------------


def parse_timestamp(value: Union[str, int, None]) -> Optional[datetime]:
    if value is None or value == "":
        return None
    v = str(value).strip()
    if TIMESTAMP_RE.match(v):
        return timestamp_to_datetime(v)
    try:
        dt = datetime.fromisoformat(v.replace("Z", "+00:00"))
    except ValueError:
        raise ConfigError(f"bad timestamp: {value!r}")
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


# -------------------- Config loader --------------------


def load_config_file(path: str) -> Dict[str, Union[str, int, float, bool, List[str]]]:
    p = Path(path)
    suf = p.suffix.lower()
    if suf in {".toml", ".tml"}:
        try:
            import tomllib  # py311+
        except ImportError:
            try:
                import tomli as tomllib  # backport
            except ImportError:
                raise ConfigError("TOML config requires Python 3.11+ or 'tomli'")
        with open(p, "rb") as f:
            return tomllib.load(f) or {}
    elif suf in {".yaml", ".yml"}:
        import yaml

        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ConfigError("Top-level YAML must be a mapping")
            return data
    else:
        raise ConfigError("Unsupported config format. Use .toml or .yaml")
