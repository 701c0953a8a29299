"""Parser for annotations within an Aquascope code block body."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

_MARKERS = (
    ("`[", "]`", "interp"),
    ("`(", ")`", "stepper"),
    ("`{", "}`", "boundaries"),
)

_PATTERN = re.compile(
    "|".join(
        f"{re.escape(open_)}(?P<{name}>[^{re.escape(close[0])}]*){re.escape(close)}"
        for open_, close, name in _MARKERS
    )
)


class MatcherKind(str, Enum):
    LITERAL = "Literal"
    REGEX = "Regex"


@dataclass(frozen=True)
class PathMatcher:
    """A matcher selecting the paths to focus on a stepper line."""

    kind: MatcherKind
    value: str

    @classmethod
    def literal(cls, value: str) -> PathMatcher:
        return cls(MatcherKind.LITERAL, value)

    @classmethod
    def regex(cls, value: str) -> PathMatcher:
        return cls(MatcherKind.REGEX, value)

    def to_json(self) -> dict[str, str]:
        return {"type": self.kind.value, "value": self.value}


@dataclass
class StepperAnnotations:
    focused_lines: list[int] = field(default_factory=list)
    focused_paths: dict[int, list[PathMatcher]] = field(default_factory=dict)


@dataclass
class BoundariesAnnotations:
    focused_lines: list[int] = field(default_factory=list)


@dataclass
class InterpAnnotations:
    state_locations: list[int] = field(default_factory=list)


@dataclass
class AquascopeAnnotations:
    """Annotations collected from a code block: lines are 1-based, locations are byte offsets."""

    hidden_lines: list[int] = field(default_factory=list)
    interp: InterpAnnotations = field(default_factory=InterpAnnotations)
    stepper: StepperAnnotations = field(default_factory=StepperAnnotations)
    boundaries: BoundariesAnnotations = field(default_factory=BoundariesAnnotations)

    def to_json(self) -> dict[str, Any]:
        return {
            "hidden_lines": list(self.hidden_lines),
            "interp": {"state_locations": list(self.interp.state_locations)},
            "stepper": {
                "focused_lines": list(self.stepper.focused_lines),
                "focused_paths": {
                    str(line): [matcher.to_json() for matcher in matchers]
                    for line, matchers in self.stepper.focused_paths.items()
                },
            },
            "boundaries": {"focused_lines": list(self.boundaries.focused_lines)},
        }


def _byte_len(text: str) -> int:
    return len(text.encode("utf-8"))


def _lines(text: str) -> list[str]:
    """Split into lines, dropping a final newline and the CR of CRLF endings."""
    if not text:
        return []
    ends_with_newline = text.endswith("\n")
    parts = text.split("\n")
    if ends_with_newline:
        parts.pop()
    terminated = len(parts) if ends_with_newline else len(parts) - 1
    return [
        part[:-1] if number < terminated and part.endswith("\r") else part
        for number, part in enumerate(parts)
    ]


def _parse_config(interior: str) -> dict[str, str]:
    config: dict[str, str] = {}
    for item in interior.split(","):
        if item == "":
            continue
        key, _, value = item.partition(":")
        config[key] = value
    return config


def parse_annotations(code: str) -> tuple[str, AquascopeAnnotations]:
    """Strip annotation markers from ``code``, returning the clean code and the annotations."""
    annots = AquascopeAnnotations()
    idx = 0
    output_lines: list[str] = []

    for line_pos, line in enumerate(_lines(code), start=1):
        fragments: list[str] = []

        def add(fragment: str) -> None:
            nonlocal idx
            fragments.append(fragment)
            idx += _byte_len(fragment)

        if line.startswith("#"):
            annots.hidden_lines.append(line_pos)
            add(line[1:])
        elif line.startswith("\\#"):
            add("#")
            add(line[2:])
        else:
            while (match := _PATTERN.search(line)) is not None:
                add(line[: match.start()])
                match_type = match.lastgroup
                config = _parse_config(match.group(match_type))

                if match_type == "interp":
                    annots.interp.state_locations.append(idx)
                elif match_type == "stepper":
                    if "focus" in config:
                        annots.stepper.focused_lines.append(line_pos)
                    if "paths" in config:
                        annots.stepper.focused_paths.setdefault(line_pos, []).append(
                            PathMatcher.literal(config["paths"])
                        )
                    if "rxpaths" in config:
                        annots.stepper.focused_paths.setdefault(line_pos, []).append(
                            PathMatcher.regex(config["rxpaths"])
                        )
                else:
                    annots.boundaries.focused_lines.append(line_pos)

                line = line[match.end():]
            add(line)

        idx += 1  # the newline
        output_lines.append("".join(fragments))

    return "\n".join(output_lines), annots