"""Settings and endpoint spec loading.

Settings come from built-in defaults, then an optional TOML config file, then
``SQLSHELF_*`` environment variables. Endpoint specs are TOML files collected
from a directory and merged together.
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from errors import ConfigError
from schema import ARG_TYPES, VALIDATOR_KINDS, ArgSchema, ArgValidator
from security import RULE_KINDS, AccessRule, Principal

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
DEFAULT_DB_FILE = BASE_DIR / "db.sqlite3"
DEFAULT_SQL_FILE = BASE_DIR / "examples" / "db-sqlite.sql"
DEFAULT_SPECS_DIR = BASE_DIR / "specs"
DEFAULT_PORT = 8080

ENV_CONFIG = "SQLSHELF_CONFIG"
ENV_DB_FILE = "SQLSHELF_DB_FILE"
ENV_DB_WAL = "SQLSHELF_DB_WAL"
ENV_SQL_FILE = "SQLSHELF_SQL_FILE"
ENV_SPECS_DIR = "SQLSHELF_SPECS_DIR"
ENV_PORT = "SQLSHELF_PORT"
ENV_CORS_ORIGINS = "SQLSHELF_CORS_ORIGINS"
ENV_SQLITE_BIN = "SQLSHELF_SQLITE_BIN"

DEFAULT_LIMIT_ARG = "limit"
DEFAULT_OFFSET_ARG = "offset"
DEFAULT_LIMIT_MAX = 1000


# --------------------------------------------------------------------------------------
# Settings
# --------------------------------------------------------------------------------------


@dataclass(frozen=True)
class Settings:
    db_file: Path = DEFAULT_DB_FILE
    wal: bool = False
    sql_file: Path = DEFAULT_SQL_FILE
    specs_dir: Path = DEFAULT_SPECS_DIR
    port: int = DEFAULT_PORT
    cors_origins: tuple[str, ...] = ("*",)
    sqlite_bin: Optional[str] = None


def _as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _split_origins(value: object) -> tuple[str, ...]:
    if isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        items = str(value).split(",")
    return tuple(item.strip() for item in items if item.strip())


def _resolve(path_value: object, base_dir: Path) -> Path:
    path = Path(str(path_value))
    return path if path.is_absolute() else base_dir / path


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise ConfigError(f"Can't read file {path}: {exc}") from exc
    try:
        return tomllib.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Can't parse file {path}: {exc}") from exc


def _apply_config_file(settings: Settings, config_file: Path) -> Settings:
    data = _read_toml(config_file)
    conf_dir = config_file.resolve().parent
    updates: dict[str, Any] = {}

    storage = data.get("storage") or {}
    if not isinstance(storage, Mapping):
        raise ConfigError(f"[storage] in {config_file} must be a table")
    if "file" in storage:
        updates["db_file"] = _resolve(storage["file"], conf_dir)
    if "wal" in storage:
        updates["wal"] = _as_bool(storage["wal"])
    if "seed" in storage:
        updates["sql_file"] = _resolve(storage["seed"], conf_dir)

    if "specs_dir" in data:
        updates["specs_dir"] = _resolve(data["specs_dir"], conf_dir)
    if "port" in data:
        try:
            updates["port"] = int(data["port"])
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid port in {config_file}: {data['port']!r}") from exc
    if "cors_origins" in data:
        updates["cors_origins"] = _split_origins(data["cors_origins"])
    if data.get("sqlite_bin"):
        updates["sqlite_bin"] = str(data["sqlite_bin"])

    return replace(settings, **updates)


def _apply_env(settings: Settings, environ: Mapping[str, str]) -> Settings:
    updates: dict[str, Any] = {}

    if environ.get(ENV_DB_FILE):
        updates["db_file"] = Path(environ[ENV_DB_FILE])
    if environ.get(ENV_DB_WAL):
        updates["wal"] = _as_bool(environ[ENV_DB_WAL])
    if environ.get(ENV_SQL_FILE):
        updates["sql_file"] = Path(environ[ENV_SQL_FILE])
    if environ.get(ENV_SPECS_DIR):
        updates["specs_dir"] = Path(environ[ENV_SPECS_DIR])
    if environ.get(ENV_PORT):
        try:
            updates["port"] = int(environ[ENV_PORT])
        except ValueError:
            logger.error("Can't parse port number from %s=%r", ENV_PORT, environ[ENV_PORT])
    if environ.get(ENV_CORS_ORIGINS):
        updates["cors_origins"] = _split_origins(environ[ENV_CORS_ORIGINS])
    if environ.get(ENV_SQLITE_BIN):
        updates["sqlite_bin"] = environ[ENV_SQLITE_BIN]

    return replace(settings, **updates)


def load_settings(
    config_file: Optional[Path | str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Build settings from defaults, an optional config file and the environment."""

    env = os.environ if environ is None else environ
    settings = Settings()

    config_path = config_file or env.get(ENV_CONFIG)
    if config_path:
        settings = _apply_config_file(settings, Path(config_path))

    return _apply_env(settings, env)


# --------------------------------------------------------------------------------------
# Endpoint specs
# --------------------------------------------------------------------------------------


@dataclass(frozen=True)
class EndpointSpec:
    uri: str
    query: str
    args: tuple[str, ...] = ()
    paginated: bool = False
    one_record: bool = False
    limit_arg: str = DEFAULT_LIMIT_ARG
    offset_arg: str = DEFAULT_OFFSET_ARG
    limit_max: int = DEFAULT_LIMIT_MAX
    allow: tuple[AccessRule, ...] = ()
    schema: Mapping[str, ArgSchema] = field(default_factory=dict)
    # Accept POST/PUT with a flat JSON object body as the argument source.
    body_args: bool = False

    def accepts(self, name: str) -> bool:
        return name in self.args or name in self.schema


@dataclass
class ShelfSpecs:
    principals: list[Principal] = field(default_factory=list)
    endpoints: list[EndpointSpec] = field(default_factory=list)

    def extend(self, other: "ShelfSpecs") -> None:
        self.principals.extend(other.principals)
        self.endpoints.extend(other.endpoints)

    def validate(self) -> None:
        """Drop duplicate principals and endpoints, keeping the first of each."""

        seen_ids: set[str] = set()
        principals = []
        for principal in self.principals:
            if principal.id in seen_ids:
                logger.warning("Duplicate auth entry found with id: %s", principal.id)
                continue
            seen_ids.add(principal.id)
            principals.append(principal)

        seen_uris: set[str] = set()
        endpoints = []
        for endpoint in self.endpoints:
            if endpoint.uri in seen_uris:
                logger.warning("Duplicate endpoint for URI: %s", endpoint.uri)
                continue
            seen_uris.add(endpoint.uri)
            endpoints.append(endpoint)

        self.principals = principals
        self.endpoints = endpoints


def _parse_rule(raw: object, source: Path) -> AccessRule:
    if not isinstance(raw, Mapping):
        raise ConfigError(f"Access rule in {source} must be a table, got {raw!r}")
    kind = str(raw.get("kind", "")).lower()
    if kind not in RULE_KINDS:
        raise ConfigError(f"Unknown access rule kind {kind!r} in {source}")
    if kind in ("and", "or"):
        nested = raw.get("nested") or []
        if not nested:
            raise ConfigError(f"Access rule {kind!r} in {source} needs nested rules")
        return AccessRule(kind=kind, nested=tuple(_parse_rule(item, source) for item in nested))
    value = str(raw.get("v", ""))
    if kind == "role":
        value = value.upper()
    return AccessRule(kind=kind, value=value)


def _parse_principal(raw: Mapping[str, Any], source: Path, environ: Mapping[str, str]) -> Principal:
    principal_id = raw.get("id")
    if not principal_id:
        raise ConfigError(f"Auth entry without id in {source}")

    if raw.get("key_hash"):
        secret = str(raw["key_hash"])
    elif raw.get("key"):
        key = str(raw["key"])
        if _as_bool(raw.get("from_env", False)):
            if key not in environ:
                raise ConfigError(f'Can\'t load API key from ENV variable "{key}" for auth entry {principal_id}')
            secret = environ[key]
        else:
            secret = key
    else:
        raise ConfigError(f"Auth entry {principal_id} in {source} needs key or key_hash")

    roles = frozenset(str(role).upper() for role in raw.get("roles", []))
    return Principal(id=str(principal_id), secret=secret, roles=roles)


def _parse_validator(raw: object, arg_name: str, source: Path) -> ArgValidator:
    if not isinstance(raw, Mapping):
        raise ConfigError(f"Validator for argument {arg_name} in {source} must be a table, got {raw!r}")
    kind = str(raw.get("kind", "")).lower()
    if kind not in VALIDATOR_KINDS:
        raise ConfigError(f"Unknown validator kind {kind!r} for argument {arg_name} in {source}")
    if kind in ("and", "or"):
        nested = raw.get("nested") or []
        if not nested:
            raise ConfigError(f"Validator {kind!r} for argument {arg_name} in {source} needs nested validators")
        return ArgValidator(kind=kind, nested=tuple(_parse_validator(item, arg_name, source) for item in nested))
    if kind == "not_null":
        return ArgValidator(kind=kind)

    try:
        low = float(raw["from"])
        high = float(raw["to"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigError(f"Validator {kind!r} for argument {arg_name} in {source} needs numeric from/to") from exc
    if kind == "range" and (low < 0 or not low.is_integer() or not high.is_integer()):
        raise ConfigError(f"Validator 'range' for argument {arg_name} in {source} takes non-negative integers")
    return ArgValidator(kind=kind, low=low, high=high)


def _parse_schema(raw: object, source: Path) -> dict[str, ArgSchema]:
    if not isinstance(raw, Mapping):
        raise ConfigError(f"Argument schema in {source} must be a table")

    schema = {}
    for name, entry in raw.items():
        if not isinstance(entry, Mapping):
            raise ConfigError(f"Schema for argument {name} in {source} must be a table")
        arg_type = entry.get("type")
        if arg_type is not None:
            arg_type = str(arg_type).lower()
            if arg_type not in ARG_TYPES:
                raise ConfigError(f"Unknown type {arg_type!r} for argument {name} in {source}")
        schema[str(name)] = ArgSchema(
            type=arg_type,
            required=_as_bool(entry.get("required", False)),
            validate=tuple(_parse_validator(item, name, source) for item in entry.get("validate", [])),
        )
    return schema


def _parse_endpoint(raw: Mapping[str, Any], source: Path) -> EndpointSpec:
    uri = raw.get("uri")
    query = raw.get("query")
    if not uri or not query:
        raise ConfigError(f"Endpoint in {source} needs both uri and query")

    try:
        limit_max = int(raw.get("limit_max", DEFAULT_LIMIT_MAX))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid limit_max for endpoint {uri} in {source}") from exc

    return EndpointSpec(
        uri=str(uri),
        query=str(query),
        args=tuple(str(arg) for arg in raw.get("args", [])),
        paginated=_as_bool(raw.get("paginated", False)),
        one_record=_as_bool(raw.get("one_record", False)),
        limit_arg=str(raw.get("limit_arg", DEFAULT_LIMIT_ARG)),
        offset_arg=str(raw.get("offset_arg", DEFAULT_OFFSET_ARG)),
        limit_max=limit_max,
        allow=tuple(_parse_rule(rule, source) for rule in raw.get("allow", [])),
        schema=_parse_schema(raw.get("schema", {}), source),
        body_args=_as_bool(raw.get("body_args", False)),
    )


def parse_specs(data: Mapping[str, Any], source: Path, environ: Optional[Mapping[str, str]] = None) -> ShelfSpecs:
    env = os.environ if environ is None else environ
    return ShelfSpecs(
        principals=[_parse_principal(item, source, env) for item in data.get("auth", [])],
        endpoints=[_parse_endpoint(item, source) for item in data.get("endpoint", [])],
    )


def load_specs(specs_dir: Path | str, environ: Optional[Mapping[str, str]] = None) -> ShelfSpecs:
    """Merge every ``*.toml`` file found in ``specs_dir``."""

    directory = Path(specs_dir)
    if not directory.is_dir():
        raise ConfigError(f"Can't read directory {directory}")

    result = ShelfSpecs()
    for path in sorted(directory.iterdir()):
        if not path.is_file() or path.suffix.lower() != ".toml":
            continue
        result.extend(parse_specs(_read_toml(path), path, environ))

    result.validate()
    if not result.endpoints:
        logger.warning("No endpoints found in %s", directory)
    return result
