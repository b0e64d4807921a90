"""Static DNS entries rendered as RouterOS script lines."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import TextIO


class EmptyFieldsError(ValueError):
    """Raised when an entry lacks the fields RouterOS requires."""

    def __init__(self, message: str = "required fields does not filled") -> None:
        super().__init__(message)


@dataclass
class DNSStaticEntry:
    """A static DNS entry for RouterOS.

    Values are written as they are, without escaping or filtering.
    """

    address: str = ""
    comment: str = ""
    disabled: bool = False
    name: str = ""
    regexp: str = ""
    ttl: str = ""

    def format(self, prefix: str = "", postfix: str = "") -> str:
        """Render the entry in RouterOS script form; empty values are omitted."""
        if not self.address or (not self.name and not self.regexp):
            raise EmptyFieldsError()

        parts = []
        if prefix:
            parts.append(prefix)
        parts.append(f"address={self.address}")
        if self.comment:
            parts.append(f'comment="{self.comment}"')
        parts.append("disabled=" + ("yes" if self.disabled else "no"))
        if self.name:
            parts.append(f'name="{self.name}"')
        if self.regexp:
            parts.append(f'regexp="{self.regexp}"')
        if self.ttl:
            parts.append(f'ttl="{self.ttl}"')
        if postfix:
            parts.append(postfix)
        return " ".join(parts)


@dataclass
class RenderingOptions:
    """Text placed before and after every rendered entry."""

    prefix: str = ""
    postfix: str = ""


def render(
    entries: Iterable[DNSStaticEntry],
    out: TextIO,
    options: RenderingOptions | None = None,
) -> int:
    """Write entries to ``out`` one per line, skipping incomplete ones.

    Returns the number of characters written.
    """
    options = options or RenderingOptions()
    total = 0
    for entry in entries:
        try:
            line = entry.format(options.prefix, options.postfix)
        except EmptyFieldsError:
            continue
        chunk = "\n" + line if total else line
        out.write(chunk)
        total += len(chunk)
    return total