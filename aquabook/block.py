"""Parser for Aquascope code blocks within Markdown."""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass, field

from .annotations import AquascopeAnnotations, parse_annotations

_OPEN = "```aquascope"
_FENCE = "```"
_SYM = re.compile(r"[^,=\n+]*")


def _symbol(text: str, pos: int) -> tuple[str, int]:
    match = _SYM.match(text, pos)
    return match.group(0), match.end()


@dataclass
class AquascopeBlock:
    """An ```aquascope fenced block: its operations, config, code and annotations."""

    operations: list[str]
    config: list[tuple[str, str]]
    code: str
    annotations: AquascopeAnnotations = field(default_factory=AquascopeAnnotations)

    def cache_key(self) -> str:
        """A stable key for caching results; annotations do not affect it."""
        payload = json.dumps(
            [self.operations, [list(pair) for pair in self.config], self.code],
            separators=(",", ":"),
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    @classmethod
    def _parse_at(cls, text: str, pos: int) -> tuple[AquascopeBlock, int] | None:
        if not text.startswith(_OPEN, pos):
            return None
        pos += len(_OPEN)
        if not text.startswith(",", pos):
            return None

        operation, pos = _symbol(text, pos + 1)
        operations = [operation]
        while text.startswith("+", pos):
            operation, pos = _symbol(text, pos + 1)
            operations.append(operation)

        config: list[tuple[str, str]] = []
        while text.startswith(",", pos):
            key, after = _symbol(text, pos + 1)
            if text.startswith("=", after):
                value, pos = _symbol(text, after + 1)
            else:
                value, pos = "true", after
            config.append((key, value))

        close = text.find(_FENCE, pos)
        if close < 0:
            return None
        code, annotations = parse_annotations(text[pos:close].strip())
        return cls(operations, config, code, annotations), close + len(_FENCE)

    @classmethod
    def parse_all(cls, content: str) -> list[tuple[range, AquascopeBlock]]:
        """Find every Aquascope block in ``content`` with the range of text it spans."""
        blocks: list[tuple[range, AquascopeBlock]] = []
        pos = 0
        while (start := content.find(_OPEN, pos)) >= 0:
            parsed = cls._parse_at(content, start)
            if parsed is None:
                pos = start + 1
                continue
            block, end = parsed
            blocks.append((range(start, end), block))
            pos = end
        return blocks