"""TaxoConfig: project-local config for a taxonomy store.

Default layout (all relative to the project root):

    taxotree.toml         # project config
    .env                  # optional: TAXOTREE_HOST, TAXOTREE_PORT, TAXOTREE_DB
    .taxotree/
        index/
            tree.db       # SQLite node store, rebuilt by `taxotree ingest`
        .gitignore        # auto-written: ignores index/

taxotree.toml example:

    [taxotree]
    name = "imagenet"
    # data_dir = ".taxotree"   # default

    [ingest]
    tag = "synset"
    id_attr = "wnid"
    label_attr = "words"
    chunk_size = 65536
    batch_size = 5000

    [server]
    host = "127.0.0.1"
    port = 3000
    cors_origin = "*"

    [pagination]
    default_limit = 10
    max_limit = 200
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

_CONFIG_FILENAME = "taxotree.toml"
_DEFAULT_DATA_DIR = ".taxotree"
_GITIGNORE_CONTENT = "index/\n"


@dataclass
class IngestConfig:
    tag: str = "synset"          # element name of a taxonomy node
    id_attr: str = "wnid"        # disambiguating source id
    label_attr: str = "words"    # human-readable label
    chunk_size: int = 64 * 1024  # bytes fed to the XML parser per step
    batch_size: int = 5000       # rows per executemany during load


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 3000
    cors_origin: str = "*"


@dataclass
class PaginationConfig:
    default_limit: int = 10
    max_limit: int = 200


@dataclass
class TaxoConfig:
    """Resolved configuration for a taxonomy project."""

    root: Path                      # directory that contains taxotree.toml
    name: str = ""
    data_dir: Path = field(default_factory=Path)
    db_override: Path | None = None
    ingest: IngestConfig = field(default_factory=IngestConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    pagination: PaginationConfig = field(default_factory=PaginationConfig)

    @property
    def index_dir(self) -> Path:
        return self.data_dir / "index"

    @property
    def db_path(self) -> Path:
        if self.db_override is not None:
            return self.db_override
        return self.index_dir / "tree.db"

    def clamp_limit(self, limit: int | None) -> int:
        """Missing → default_limit; anything larger than max_limit is capped."""
        if limit is None:
            return self.pagination.default_limit
        return min(limit, self.pagination.max_limit)

    def ensure_dirs(self) -> None:
        """Create the index dir (and the store's parent dir) if missing."""
        self.index_dir.mkdir(parents=True, exist_ok=True)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_gitignore()

    def _write_gitignore(self) -> None:
        gitignore = self.data_dir / ".gitignore"
        if not gitignore.exists():
            gitignore.write_text(_GITIGNORE_CONTENT)


def _load_env(root: Path) -> dict[str, str]:
    """Parse a simple KEY=VALUE .env file (no external dependency)."""
    env_file = root / ".env"
    if not env_file.exists():
        return {}
    env: dict[str, str] = {}
    for line in env_file.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            k, _, v = line.partition("=")
            env[k.strip()] = v.strip().strip('"').strip("'")
    return env


def load_config(root: Path | str | None = None) -> TaxoConfig:
    """Load taxotree.toml from root (or search upward from cwd if root is None)."""
    root_path = _find_root(Path(root) if root else Path.cwd())
    config_path = root_path / _CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_path.exists():
        with config_path.open("rb") as f:
            raw = tomllib.load(f)

    env = _load_env(root_path)

    main_section = raw.get("taxotree", {})
    ing_section = raw.get("ingest", {})
    srv_section = raw.get("server", {})
    pag_section = raw.get("pagination", {})

    name = main_section.get("name", root_path.name)
    data_dir = root_path / main_section.get("data_dir", _DEFAULT_DATA_DIR)

    # .env overrides taxotree.toml
    db_env = env.get("TAXOTREE_DB")
    db_override = (root_path / db_env) if db_env else None

    pagination = PaginationConfig(
        default_limit=int(pag_section.get("default_limit", 10)),
        max_limit=int(pag_section.get("max_limit", 200)),
    )
    if pagination.default_limit < 1 or pagination.max_limit < pagination.default_limit:
        msg = (
            f"{config_path}: [pagination] needs 1 <= default_limit <= max_limit "
            f"(got {pagination.default_limit}, {pagination.max_limit})"
        )
        raise ValueError(msg)

    return TaxoConfig(
        root=root_path,
        name=name,
        data_dir=data_dir,
        db_override=db_override,
        ingest=IngestConfig(
            tag=ing_section.get("tag", "synset"),
            id_attr=ing_section.get("id_attr", "wnid"),
            label_attr=ing_section.get("label_attr", "words"),
            chunk_size=int(ing_section.get("chunk_size", 64 * 1024)),
            batch_size=int(ing_section.get("batch_size", 5000)),
        ),
        server=ServerConfig(
            host=env.get("TAXOTREE_HOST") or str(srv_section.get("host", "127.0.0.1")),
            port=int(env.get("TAXOTREE_PORT") or srv_section.get("port", 3000)),
            cors_origin=str(srv_section.get("cors_origin", "*")),
        ),
        pagination=pagination,
    )


def _find_root(start: Path) -> Path:
    """Walk upward from start looking for taxotree.toml."""
    for directory in (start, *start.parents):
        if (directory / _CONFIG_FILENAME).exists():
            return directory
    return start


def init_config(root: Path, name: str | None = None) -> Path:
    """Write a default taxotree.toml at root. Raises if already exists."""
    config_path = root / _CONFIG_FILENAME
    if config_path.exists():
        msg = f"taxotree.toml already exists at {config_path}"
        raise FileExistsError(msg)

    project_name = name or root.name
    content = f"""\
[taxotree]
name = "{project_name}"
# data_dir = ".taxotree"   # default; index/ holds the SQLite store

# [ingest]
# tag = "synset"           # element name of a taxonomy node
# id_attr = "wnid"         # disambiguating source id attribute
# label_attr = "words"     # label attribute
# chunk_size = 65536
# batch_size = 5000

# [server]
# host = "127.0.0.1"       # or set TAXOTREE_HOST in .env
# port = 3000              # or set TAXOTREE_PORT in .env
# cors_origin = "*"

# [pagination]
# default_limit = 10
# max_limit = 200
"""
    config_path.write_text(content)
    return config_path
