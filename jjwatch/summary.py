"""Commit summary snapshot, ``jj log`` output parsing, and display formatting."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from pygments.console import ansiformat

CHANGE_ID_WIDTH = 8
PADDED_PREFIX_WIDTH = CHANGE_ID_WIDTH + 1

# First line: unique change-id prefix padded to 9 columns, then the rest of an
# 8 character change id. Second line: commit flags and bookmark lists.
DEFAULT_HEAD_TEMPLATE = (
    f"pad_end({PADDED_PREFIX_WIDTH}, change_id.shortest({CHANGE_ID_WIDTH}))"
    f' ++ change_id.shortest({CHANGE_ID_WIDTH}).rest() ++ "\\n"'
    ' ++ "empty=" ++ empty'
    ' ++ " conflict=" ++ conflict'
    ' ++ " divergent=" ++ divergent'
    ' ++ " immutable=" ++ immutable'
    ' ++ " local=" ++ local_bookmarks.map(|b| b.name()).join(",")'
    ' ++ " remote=" ++ remote_bookmarks.map(|b| b.name() ++ "@" ++ b.remote()).join(",")'
)

# Flags worth surfacing in the status string, in display order.
DISPLAY_FLAGS = ("conflict", "divergent", "empty")

@dataclass(frozen=True)
class CommitSummary:
    """Display-ready snapshot of the working-copy commit."""

    change_id_prefix: str
    change_id_rest: str
    properties: Mapping[str, bool] = field(default_factory=lambda: MappingProxyType({}))
    local_bookmarks: tuple[str, ...] = ()
    remote_bookmarks: tuple[str, ...] = ()

    @property
    def change_id(self) -> str:
        return self.change_id_prefix + self.change_id_rest


def _split_bookmarks(value: str) -> tuple[str, ...]:
    return tuple(name for name in value.split(",") if name)


def parse_head_output(output: str) -> CommitSummary | None:
    """Parse ``jj log`` output produced by the head template.

    Returns ``None`` when the first line does not hold both the padded prefix
    block and the remainder. The unique prefix length is whatever the
    remainder leaves of ``CHANGE_ID_WIDTH``.
    """
    lines = output.splitlines()
    if not lines:
        return None
    tokens = lines[0].split()
    if len(tokens) < 2:
        return None

    padded_prefix, rest = tokens[0], tokens[1]
    unique_len = max(0, CHANGE_ID_WIDTH - len(rest))
    prefix = padded_prefix[:unique_len]

    properties: dict[str, bool] = {}
    local_bookmarks: tuple[str, ...] = ()
    remote_bookmarks: tuple[str, ...] = ()
    for line in lines[1:]:
        for token in line.split():
            key, sep, value = token.partition("=")
            if not sep:
                continue
            if key == "local":
                local_bookmarks = _split_bookmarks(value)
            elif key == "remote":
                remote_bookmarks = _split_bookmarks(value)
            elif value in ("true", "false"):
                properties[key] = value == "true"

    return CommitSummary(
        change_id_prefix=prefix,
        change_id_rest=rest,
        properties=MappingProxyType(properties),
        local_bookmarks=local_bookmarks,
        remote_bookmarks=remote_bookmarks,
    )


def format_summary_string(summary: CommitSummary | None, color: bool = False) -> str:
    """Format a one-line status string such as ``kxywzqlm main (empty)``."""
    if summary is None:
        return ""

    if color:
        head = ansiformat("*brightmagenta*", summary.change_id_prefix) if summary.change_id_prefix else ""
        head += ansiformat("brightblack", summary.change_id_rest) if summary.change_id_rest else ""
    else:
        head = summary.change_id

    parts = [head]
    if summary.local_bookmarks:
        parts.append(" ".join(summary.local_bookmarks))
    flags = [name for name in DISPLAY_FLAGS if summary.properties.get(name)]
    if flags:
        parts.append(f"({', '.join(flags)})")
    return " ".join(parts)
