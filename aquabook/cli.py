"""mdBook preprocessor command that embeds Aquascope diagrams into chapters."""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any, Protocol

from .cache import CACHE_PATH
from .permissions import InvalidPermissionError
from .preprocessor import AquascopeError, AquascopePreprocessor
from .workspace import TOOLCHAIN_FILE, WorkspaceError

SUPPORTED_RENDERERS = ("html",)


class _Replacer(Protocol):
    def replacements(self, content: str) -> list[tuple[range, str]]: ...


def apply_replacements(content: str, replacements: Iterable[tuple[range, str]]) -> str:
    """Substitute each span of ``content`` with its replacement text."""
    pieces: list[str] = []
    pos = 0
    for span, text in sorted(replacements, key=lambda item: (item[0].start, item[0].stop)):
        if span.start < pos:
            raise ValueError(f"Overlapping replacement at {span.start}")
        pieces.append(content[pos:span.start])
        pieces.append(text)
        pos = span.stop
    pieces.append(content[pos:])
    return "".join(pieces)


def _chapters(items: Iterable[Any]) -> Iterator[dict[str, Any]]:
    for item in items:
        if isinstance(item, dict) and isinstance(item.get("Chapter"), dict):
            chapter = item["Chapter"]
            yield chapter
            yield from _chapters(chapter.get("sub_items", []))


def process_book(book: dict[str, Any], preprocessor: _Replacer) -> dict[str, Any]:
    """Rewrite the content of every chapter in an mdBook book, in place."""
    items = book.get("sections", book.get("items", []))
    for chapter in _chapters(items):
        content = chapter.get("content", "")
        chapter["content"] = apply_replacements(content, preprocessor.replacements(content))
    return book


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="mdbook-aquascope",
        description="mdBook preprocessor that embeds Aquascope diagrams.",
    )
    parser.add_argument("--toolchain-file", type=Path, default=Path(TOOLCHAIN_FILE))
    parser.add_argument("--cache", type=Path, default=Path(CACHE_PATH))
    commands = parser.add_subparsers(dest="command")
    supports = commands.add_parser("supports", help="check whether a renderer is supported")
    supports.add_argument("renderer")
    args = parser.parse_args(argv)

    if args.command == "supports":
        return 0 if args.renderer in SUPPORTED_RENDERERS else 1

    try:
        _context, book = json.load(sys.stdin)
        preprocessor = AquascopePreprocessor.create(args.toolchain_file, args.cache)
        process_book(book, preprocessor)
        preprocessor.save_cache()
    except (
        AquascopeError,
        WorkspaceError,
        InvalidPermissionError,
        OSError,
        ValueError,
        TypeError,
    ) as error:
        print(f"Error: {error}", file=sys.stderr)
        return 1

    json.dump(book, sys.stdout)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())