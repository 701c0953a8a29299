"""Parses inline permissions outside of an Aquascope block."""

from __future__ import annotations

import re
from collections.abc import Iterator

VALID_PERMISSIONS = ("read", "write", "own", "flow")

_PERM_RE = re.compile(r"@Perm(\[[^\]]*\])?\{([^}]*)\}")

Replacement = tuple[range, str]


class InvalidPermissionError(ValueError):
    """Raised for an unknown permission name or option."""


def parse_perms(content: str) -> Iterator[Replacement]:
    """Yield the range and HTML replacement of each ``@Perm`` marker in ``content``."""
    for match in _PERM_RE.finditer(content):
        perm = match.group(2)
        if perm not in VALID_PERMISSIONS:
            raise InvalidPermissionError(f"Invalid permission: {perm}")

        letter = perm[0].upper()
        perm_html = f'<span class="perm {perm}">{letter}</span>'
        option = match.group(1)
        if option is None:
            html = perm_html
        elif option == "[gained]":
            html = f'<span><span class="perm-diff-add">+</span>{perm_html}</span>'
        elif option == "[lost]":
            html = (
                '<span class="perm-diff-sub-container">'
                f'<div class="perm-diff-sub"></div>{perm_html}</span>'
            )
        elif option == "[missing]":
            html = f'<span class="perm missing {perm}">{letter}</span>'
        else:
            raise InvalidPermissionError(f"Invalid permission option: {option}")

        yield range(match.start(), match.end()), html