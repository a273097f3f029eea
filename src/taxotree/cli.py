"""taxotree CLI: browse a large XML taxonomy through a paginated SQLite store.

Commands:
    taxotree init [NAME]              create taxotree.toml + data dirs
    taxotree ingest FILE.xml          stream-flatten FILE and replace the store
    taxotree export FILE.xml          flatten to JSON (flat list or --tree)
    taxotree root                     show the root node
    taxotree children ID              one page of a node's children
    taxotree search QUERY             one page of matches with ancestor paths
    taxotree status                   config + store summary
    taxotree serve                    start the JSON HTTP API
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

from taxotree.config import TaxoConfig, init_config, load_config
from taxotree.cursor import InvalidCursorError
from taxotree.flattener import ParseError, iter_nodes
from taxotree.queries import get_children, get_node, get_root, search
from taxotree.store import StoreError, bulk_load, open_store, store_info
from taxotree.tree import build_tree

if TYPE_CHECKING:
    from taxotree.models import SearchPage

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_cfg() -> TaxoConfig:
    try:
        return load_config()
    except Exception as exc:
        raise click.ClickException(str(exc)) from exc


def _open(cfg: TaxoConfig):
    try:
        return open_store(cfg.db_path)
    except StoreError as exc:
        raise click.ClickException(str(exc)) from exc


def _iter_cfg_nodes(cfg: TaxoConfig, xml_file: str):
    return iter_nodes(
        xml_file,
        tag=cfg.ingest.tag,
        id_attr=cfg.ingest.id_attr,
        label_attr=cfg.ingest.label_attr,
        chunk_size=cfg.ingest.chunk_size,
    )


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="taxotree")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def cli(verbose: bool) -> None:
    """taxotree: searchable, paginated taxonomy browser."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(name)s %(message)s",
        stream=sys.stderr,
    )


# ---------------------------------------------------------------------------
# taxotree init
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("name", required=False)
@click.option("--dir", "root", default=".", show_default=True, help="Project root")
def init(name: str | None, root: str) -> None:
    """Create taxotree.toml and the data directory in the current project."""
    root_path = Path(root).resolve()
    try:
        config_path = init_config(root_path, name=name)
        click.echo(f"Created {config_path}")
    except FileExistsError:
        click.echo("taxotree.toml already exists, skipping init")

    cfg = load_config(root_path)
    cfg.ensure_dirs()
    click.echo(f"Store : {cfg.db_path}")


# ---------------------------------------------------------------------------
# taxotree ingest / export
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("xml_file", type=click.Path(exists=True, dir_okay=False))
def ingest(xml_file: str) -> None:
    """Flatten XML_FILE and replace the node store with it.

    All-or-nothing: a malformed file leaves the current store untouched.
    """
    cfg = _load_cfg()
    cfg.ensure_dirs()
    try:
        stats = bulk_load(
            _iter_cfg_nodes(cfg, xml_file),
            cfg.db_path,
            batch_size=cfg.ingest.batch_size,
            source=str(Path(xml_file).resolve()),
        )
    except ParseError as exc:
        raise click.ClickException(f"malformed input, store unchanged: {exc}") from exc
    except StoreError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(
        f"Ingested {stats.nodes} nodes (max depth {stats.max_depth}) in {stats.elapsed:.2f}s → {cfg.db_path}"
    )
    click.echo(f"Root: {stats.root_id}")


@cli.command()
@click.argument("xml_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--output", "-o", default="-", show_default=True, help="Output file ('-' = stdout)")
@click.option("--tree", "as_tree", is_flag=True, help="Nested tree instead of a flat list")
def export(xml_file: str, output: str, as_tree: bool) -> None:
    """Flatten XML_FILE to JSON without touching the store."""
    cfg = _load_cfg()
    try:
        nodes = list(_iter_cfg_nodes(cfg, xml_file))
    except ParseError as exc:
        raise click.ClickException(f"malformed input: {exc}") from exc

    if as_tree:
        root = build_tree(nodes)
        payload: object = root.to_dict() if root else {}
    else:
        payload = [n.to_dict() for n in nodes]

    text = json.dumps(payload, indent=2, ensure_ascii=False)
    if output == "-":
        click.echo(text)
    else:
        Path(output).write_text(text + "\n")
        click.echo(f"Wrote {len(nodes)} nodes to {output}", err=True)


# ---------------------------------------------------------------------------
# taxotree root / children / search
# ---------------------------------------------------------------------------


def _node_table(title: str, nodes, page: SearchPage | None = None):
    from rich.markup import escape
    from rich.table import Table

    table = Table(title=escape(title), show_header=True, header_style="bold")
    table.add_column("Label")
    table.add_column("Descendants", justify="right")
    table.add_column("Id", style="dim", no_wrap=True)
    for n in nodes:
        label = escape(n.label)
        if page is not None:
            label = f"[bold]{label}[/bold]" if page.is_match(n) else f"[dim]{label}[/dim]"
        table.add_row(label, str(n.descendant_count), n.id)
    return table


def _echo_next(page) -> None:
    if page.has_more:
        click.echo(f"more: --cursor {page.next_cursor}")


@cli.command()
def root() -> None:
    """Show the root node."""
    cfg = _load_cfg()
    conn = _open(cfg)
    try:
        node = get_root(conn)
    except StoreError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        conn.close()
    if node is None:
        raise click.ClickException("Root entry not found")
    click.echo(f"{node.label}  ({node.descendant_count} descendants)  {node.id}")


@cli.command()
@click.argument("node_id")
@click.option("--limit", "-l", type=click.IntRange(min=1), default=None, help="Page size")
@click.option("--cursor", "-c", default=None, help="Continue after this cursor")
def children(node_id: str, limit: int | None, cursor: str | None) -> None:
    """List one page of NODE_ID's direct children."""
    from rich.console import Console

    cfg = _load_cfg()
    conn = _open(cfg)
    try:
        page = get_children(conn, node_id, limit=cfg.clamp_limit(limit), cursor=cursor)
        parent = get_node(conn, node_id)
    except InvalidCursorError as exc:
        raise click.BadParameter(str(exc), param_hint="--cursor") from exc
    except StoreError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        conn.close()

    if not page.nodes:
        click.echo("(no children)")
        return
    Console().print(_node_table(f"children of {parent.label if parent else node_id}", page.nodes))
    _echo_next(page)


@cli.command("search")
@click.argument("query")
@click.option("--limit", "-l", type=click.IntRange(min=1), default=None, help="Matches per page")
@click.option("--cursor", "-c", default=None, help="Continue after this cursor")
@click.option("--tree", "as_tree", is_flag=True, help="Show matches in their tree position")
def search_cmd(query: str, limit: int | None, cursor: str | None, as_tree: bool) -> None:
    """Case-insensitive substring search over labels."""
    from rich.console import Console

    cfg = _load_cfg()
    conn = _open(cfg)
    try:
        page = search(conn, query, limit=cfg.clamp_limit(limit), cursor=cursor)
    except InvalidCursorError as exc:
        raise click.BadParameter(str(exc), param_hint="--cursor") from exc
    except StoreError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        conn.close()

    if not page.match_ids:
        click.echo("(no results)")
        return

    console = Console()
    if as_tree:
        from rich.markup import escape
        from rich.tree import Tree

        tree_root = build_tree(page.nodes)
        if tree_root is not None:
            branches: dict[str, Tree] = {}
            for _depth, tn in tree_root.walk():
                n = tn.node
                text = escape(n.label)
                text = f"[bold]{text}[/bold]" if page.is_match(n) else text
                if n.parent_id is None:
                    branches[n.id] = Tree(text)
                else:
                    branches[n.id] = branches[n.parent_id].add(text)
            console.print(branches[tree_root.node.id])
    else:
        console.print(_node_table(f"search: {query}", page.nodes, page))
    _echo_next(page)


# ---------------------------------------------------------------------------
# taxotree status
# ---------------------------------------------------------------------------


@cli.command()
def status() -> None:
    """Show config and store stats."""
    from rich.console import Console
    from rich.table import Table

    cfg = _load_cfg()
    console = Console()

    table = Table(title=f"taxotree: {cfg.name}", show_header=True, header_style="bold")
    table.add_column("Metric", style="dim", no_wrap=True)
    table.add_column("Value", justify="right")

    from importlib.metadata import version as _pkg_version
    try:
        _ver = _pkg_version("taxotree")
    except Exception:
        _ver = "unknown"
    table.add_row("Version", _ver)
    table.add_row("Config", str(cfg.root / "taxotree.toml"))
    table.add_row("Server", f"http://{cfg.server.host}:{cfg.server.port}")
    table.add_row("Page size", f"{cfg.pagination.default_limit} (max {cfg.pagination.max_limit})")
    table.add_row("", "")

    if cfg.db_path.exists():
        size_mb = cfg.db_path.stat().st_size / 1_000_000
        table.add_row("Store", f"{cfg.db_path}  [{size_mb:.1f} MB]")
        try:
            conn = open_store(cfg.db_path)
            try:
                info = store_info(conn)
            finally:
                conn.close()
            table.add_row("Nodes", info.get("node_count", "?"))
            table.add_row("Root", info.get("root_id", "?"))
            table.add_row("Depth", info.get("max_depth", "?"))
            table.add_row("Loaded", info.get("loaded_at", "?"))
            table.add_row("Source", info.get("source", "") or "-")
        except StoreError as exc:
            table.add_row("Nodes", f"[red]{exc}[/red]")
    else:
        table.add_row("Store", "[red]missing, run `taxotree ingest <file.xml>`[/red]")

    console.print(table)


# ---------------------------------------------------------------------------
# taxotree serve
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", default=None, help="Bind address (default from config)")
@click.option("--port", "-p", type=int, default=None, help="Port (default from config)")
def serve(host: str | None, port: int | None) -> None:
    """Start the JSON HTTP API."""
    from taxotree.web import serve as _serve

    cfg = _load_cfg()
    # Fail fast instead of answering every request with 503
    _open(cfg).close()
    _serve(cfg, host or cfg.server.host, port if port is not None else cfg.server.port)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    cli(standalone_mode=True)


if __name__ == "__main__":
    main()
