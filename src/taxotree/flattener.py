"""Single-pass XML → flat node stream.

The taxonomy file nests ``<synset wnid=... words=...>`` elements to arbitrary
depth. Rather than building a tree, the flattener keeps one Frame per open
ancestor and emits a Node each time an element closes, so memory is bounded
by the depth of the hierarchy, not its size.

descendant_count bookkeeping happens in two steps:
    open   → parent.child_count += 1                 (direct child arrived)
    close  → parent.child_count += frame.child_count  (child's subtree folded in)
By the time a frame closes, every descendant has been counted exactly once.

Entry points:
    iter_nodes(path_or_file)    # generator, O(depth) memory
    flatten(path_or_file)       # list, for small inputs and tests
"""

from __future__ import annotations

import logging
import time
import xml.sax
import xml.sax.handler
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, TYPE_CHECKING

from taxotree.models import PATH_SEPARATOR, Node, node_id

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger("taxotree.flattener")

DEFAULT_TAG = "synset"
DEFAULT_ID_ATTR = "wnid"
DEFAULT_LABEL_ATTR = "words"
DEFAULT_CHUNK_SIZE = 64 * 1024


class ParseError(ValueError):
    """Malformed taxonomy input. Ingestion must abort; nothing is loaded."""

    def __init__(self, message: str, line: int | None = None, column: int | None = None) -> None:
        self.line = line
        self.column = column
        if line is not None:
            message = f"{message} (line {line}, column {column})"
        super().__init__(message)


@dataclass
class Frame:
    """An element that has been opened but not yet closed."""

    disambiguator: str
    label: str
    child_count: int = 0


@dataclass
class FlattenStats:
    nodes: int = 0
    max_depth: int = 0
    started: float = field(default_factory=time.monotonic)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started


class Flattener:
    """Explicit-stack state machine turning open/close events into Nodes."""

    def __init__(self) -> None:
        self._stack: list[Frame] = []
        self._root_seen = False
        self.stats = FlattenStats()

    @property
    def depth(self) -> int:
        return len(self._stack)

    def _path(self, upto: int) -> str:
        return PATH_SEPARATOR.join(f.label for f in self._stack[:upto])

    def open(self, disambiguator: str, label: str) -> None:
        if not self._stack and self._root_seen:
            raise ParseError(f"second top-level element {disambiguator!r}: input must have a single root")
        if self._stack:
            self._stack[-1].child_count += 1
        self._stack.append(Frame(disambiguator, label))
        self.stats.max_depth = max(self.stats.max_depth, len(self._stack))

    def close(self) -> Node:
        if not self._stack:
            raise ParseError("close without matching open")
        frame = self._stack.pop()
        parent_path = self._path(len(self._stack))
        path = f"{parent_path}{PATH_SEPARATOR}{frame.label}" if self._stack else frame.label

        parent_id: str | None = None
        if self._stack:
            parent = self._stack[-1]
            parent_id = node_id(parent.disambiguator, parent_path)
            parent.child_count += frame.child_count
        else:
            self._root_seen = True

        self.stats.nodes += 1
        return Node(
            id=node_id(frame.disambiguator, path),
            parent_id=parent_id,
            label=frame.label,
            descendant_count=frame.child_count,
            path=path,
        )

    def finish(self) -> None:
        if self._stack:
            open_ids = ", ".join(f.disambiguator for f in self._stack)
            raise ParseError(f"unexpected end of input: {len(self._stack)} element(s) still open ({open_ids})")
        if not self._root_seen:
            raise ParseError("no taxonomy elements found")


class SynsetHandler(xml.sax.handler.ContentHandler):
    """SAX handler feeding taxonomy elements into a Flattener.

    Elements other than ``tag`` (wrappers, release metadata) are ignored.
    Closed nodes collect in ``pending`` until the caller drains them.
    """

    def __init__(
        self,
        tag: str = DEFAULT_TAG,
        id_attr: str = DEFAULT_ID_ATTR,
        label_attr: str = DEFAULT_LABEL_ATTR,
    ) -> None:
        super().__init__()
        self.tag = tag
        self.id_attr = id_attr
        self.label_attr = label_attr
        self.flattener = Flattener()
        self.pending: list[Node] = []
        self._locator: xml.sax.xmlreader.Locator | None = None

    def setDocumentLocator(self, locator: xml.sax.xmlreader.Locator) -> None:  # noqa: N802
        self._locator = locator

    def _error(self, message: str) -> ParseError:
        if self._locator is None:
            return ParseError(message)
        return ParseError(message, self._locator.getLineNumber(), self._locator.getColumnNumber())

    def startElement(self, name: str, attrs: xml.sax.xmlreader.AttributesImpl) -> None:  # noqa: N802
        if name != self.tag:
            return
        disambiguator = attrs.get(self.id_attr, "")
        label = attrs.get(self.label_attr, "")
        if not disambiguator:
            raise self._error(f"<{name}> is missing required attribute {self.id_attr!r}")
        if not label:
            raise self._error(f"<{name} {self.id_attr}={disambiguator!r}> is missing required attribute {self.label_attr!r}")
        try:
            self.flattener.open(disambiguator, label)
        except ParseError as exc:
            raise self._error(str(exc)) from None

    def endElement(self, name: str) -> None:  # noqa: N802
        if name != self.tag:
            return
        self.pending.append(self.flattener.close())

    def endDocument(self) -> None:  # noqa: N802
        self.flattener.finish()

    def drain(self) -> list[Node]:
        out, self.pending = self.pending, []
        return out


def _make_parser(handler: SynsetHandler) -> xml.sax.xmlreader.IncrementalParser:
    parser = xml.sax.make_parser()
    parser.setContentHandler(handler)
    # Never fetch DTDs or external entities from the input
    parser.setFeature(xml.sax.handler.feature_external_ges, False)
    parser.setFeature(xml.sax.handler.feature_external_pes, False)
    return parser  # type: ignore[return-value]


def iter_nodes(
    source: Path | str | IO[bytes],
    *,
    tag: str = DEFAULT_TAG,
    id_attr: str = DEFAULT_ID_ATTR,
    label_attr: str = DEFAULT_LABEL_ATTR,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Iterator[Node]:
    """Stream nodes out of a taxonomy file in post-order (children before parents).

    Raises ParseError on malformed XML, missing attributes, unbalanced
    structure or more than one root. Nodes already yielded before the error
    must be discarded by the caller.
    """
    handler = SynsetHandler(tag=tag, id_attr=id_attr, label_attr=label_attr)
    parser = _make_parser(handler)

    if isinstance(source, (str, Path)):
        name = str(source)
        fh: IO[bytes] = Path(source).open("rb")
        owned = True
    else:
        name = getattr(source, "name", "<stream>")
        fh = source
        owned = False

    logger.info("flattening %s", name)
    try:
        while chunk := fh.read(chunk_size):
            try:
                parser.feed(chunk)
            except xml.sax.SAXParseException as exc:
                raise ParseError(exc.getMessage(), exc.getLineNumber(), exc.getColumnNumber()) from exc
            yield from handler.drain()
        try:
            parser.close()
        except xml.sax.SAXParseException as exc:
            raise ParseError(exc.getMessage(), exc.getLineNumber(), exc.getColumnNumber()) from exc
        yield from handler.drain()
    finally:
        if owned:
            fh.close()

    stats = handler.flattener.stats
    logger.info("flattened %s: %d nodes, max depth %d, %.2fs", name, stats.nodes, stats.max_depth, stats.elapsed)


def flatten(source: Path | str | IO[bytes], **kwargs: object) -> list[Node]:
    """Materialize iter_nodes() into a list."""
    return list(iter_nodes(source, **kwargs))  # type: ignore[arg-type]
