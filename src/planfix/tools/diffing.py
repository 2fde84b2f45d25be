"""Minimal-edit diffing between full-text file versions.

The engine never overwrites a file wholesale once it exists. Instead the
desired content is diffed against the current text at character level and the
result is turned into a short list of non-overlapping edits that can be applied
as a single batch. The same diff also feeds a coarse, declaration-level change
summary used in progress output and the change log.
"""

from __future__ import annotations

import difflib
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import List, Tuple

__all__ = [
    "ChangeSummary",
    "Edit",
    "EditConflictError",
    "MAJOR_CHANGE_THRESHOLD",
    "apply_edits",
    "clean_code_output",
    "diff_to_edits",
    "format_unified_diff",
    "summarize_changes",
]


MAJOR_CHANGE_THRESHOLD = 50

_CODE_FENCE = re.compile(r"^```(?:\S+)?\s*\n?|\n?```$", re.MULTILINE)

_DECLARATION_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("function", re.compile(r"^\s*(?:async\s+)?def\s+(?P<name>\w+)")),
    ("function", re.compile(r"^\s*(?:export\s+)?(?:default\s+)?(?:async\s+)?function\s*\*?\s*(?P<name>\w+)")),
    (
        "function",
        re.compile(
            r"^\s*(?:export\s+)?(?:const|let|var)\s+(?P<name>\w+)\s*(?::[^=]+)?=\s*(?:async\s*)?(?:\([^)]*\)|\w+)\s*=>"
        ),
    ),
    ("class", re.compile(r"^\s*(?:export\s+)?(?:default\s+)?(?:abstract\s+)?class\s+(?P<name>\w+)")),
    ("type", re.compile(r"^\s*(?:export\s+)?(?:declare\s+)?(?:interface|type)\s+(?P<name>\w+)")),
    ("enum", re.compile(r"^\s*(?:export\s+)?(?:const\s+)?enum\s+(?P<name>\w+)")),
    ("variable", re.compile(r"^\s*(?:export\s+)?(?:const|let|var)\s+(?P<name>\w+)\s*[:=]")),
    ("variable", re.compile(r"^(?P<name>[A-Za-z_]\w*)\s*(?::[^=]+)?=(?!=)")),
)
_KIND_ORDER = ("function", "class", "type", "enum", "variable")


class EditConflictError(ValueError):
    """Raised when a batch of edits is unordered, overlapping or out of range."""


@dataclass(frozen=True, slots=True)
class Edit:
    """Replace ``original[start:end]`` with ``new_text``."""

    start: int
    end: int
    new_text: str

    @property
    def range(self) -> Tuple[int, int]:
        return (self.start, self.end)

    @property
    def is_insert(self) -> bool:
        return self.start == self.end


@dataclass(slots=True)
class ChangeSummary:
    """Human readable description of the difference between two texts."""

    summary: str
    added_lines: List[str] = field(default_factory=list)
    removed_lines: List[str] = field(default_factory=list)
    formatted_diff: str = ""

    @property
    def has_changes(self) -> bool:
        return bool(self.added_lines or self.removed_lines)


def clean_code_output(text: str | None) -> str:
    """Strip markdown code fences that models wrap around file content."""
    if not text:
        return ""
    return _CODE_FENCE.sub("", text)


def _common_prefix_length(left: str, right: str) -> int:
    limit = min(len(left), len(right))
    index = 0
    while index < limit and left[index] == right[index]:
        index += 1
    return index


def _common_suffix_length(left: str, right: str, floor: int) -> int:
    limit = min(len(left), len(right)) - floor
    index = 0
    while index < limit and left[-1 - index] == right[-1 - index]:
        index += 1
    return index


def _char_opcodes(original: str, target: str) -> Iterable[tuple[str, int, int, int, int]]:
    """Yield ``SequenceMatcher`` opcodes over the texts, trimming shared ends first."""
    prefix = _common_prefix_length(original, target)
    suffix = _common_suffix_length(original, target, prefix)
    original_mid = original[prefix : len(original) - suffix]
    target_mid = target[prefix : len(target) - suffix]
    if prefix:
        yield ("equal", 0, prefix, 0, prefix)
    if original_mid or target_mid:
        matcher = difflib.SequenceMatcher(None, original_mid, target_mid, autojunk=False)
        for tag, i1, i2, j1, j2 in matcher.get_opcodes():
            yield (tag, i1 + prefix, i2 + prefix, j1 + prefix, j2 + prefix)
    if suffix:
        yield (
            "equal",
            len(original) - suffix,
            len(original),
            len(target) - suffix,
            len(target),
        )


def diff_to_edits(original: str, target: str) -> List[Edit]:
    """Return ordered, non-overlapping edits that turn ``original`` into ``target``.

    Equal runs move the cursor, deletions cover the removed run and advance
    it, insertions are zero-width at the cursor. A replaced run is reported as
    a deletion followed by an insertion at the end of the deleted range.
    """

    if original == target:
        return []

    edits: List[Edit] = []
    for tag, i1, i2, j1, j2 in _char_opcodes(original, target):
        if tag == "equal":
            continue
        if tag in ("delete", "replace"):
            edits.append(Edit(i1, i2, ""))
        if tag in ("insert", "replace"):
            edits.append(Edit(i2, i2, target[j1:j2]))
    return edits


def apply_edits(original: str, edits: Sequence[Edit]) -> str:
    """Apply ``edits`` to ``original`` as one batch and return the new text.

    Nothing is produced unless the whole batch is valid, so callers can write
    the result back in a single operation.
    """

    pieces: List[str] = []
    cursor = 0
    for edit in edits:
        if edit.start < cursor or edit.end < edit.start or edit.end > len(original):
            raise EditConflictError(
                f"Edit {edit.range} overlaps a previous edit or lies outside [0, {len(original)}]"
            )
        pieces.append(original[cursor : edit.start])
        pieces.append(edit.new_text)
        cursor = edit.end
    pieces.append(original[cursor:])
    return "".join(pieces)


def format_unified_diff(path: str, original: str, updated: str, *, context_lines: int = 3) -> str:
    """Render a unified diff between ``original`` and ``updated`` for display."""
    fromfile = f"a/{path}" if original else "/dev/null"
    diff_lines = difflib.unified_diff(
        original.splitlines(keepends=True),
        updated.splitlines(keepends=True),
        fromfile=fromfile,
        tofile=f"b/{path}",
        n=context_lines,
    )
    rendered: List[str] = []
    for line in diff_lines:
        rendered.append(line if line.endswith("\n") else f"{line}\n")
    return "".join(rendered)


def _changed_lines(original: str, updated: str) -> tuple[List[str], List[str]]:
    # Line endings stay attached so a changed trailing newline still counts.
    old_lines = original.splitlines(keepends=True)
    new_lines = updated.splitlines(keepends=True)
    matcher = difflib.SequenceMatcher(None, old_lines, new_lines, autojunk=False)
    added: List[str] = []
    removed: List[str] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag in ("delete", "replace"):
            removed.extend(line.rstrip("\r\n") for line in old_lines[i1:i2])
        if tag in ("insert", "replace"):
            added.extend(line.rstrip("\r\n") for line in new_lines[j1:j2])
    return added, removed


def _declarations(lines: Iterable[str]) -> dict[str, set[str]]:
    found: dict[str, set[str]] = {kind: set() for kind in _KIND_ORDER}
    for line in lines:
        for kind, pattern in _DECLARATION_PATTERNS:
            match = pattern.match(line)
            if match:
                found[kind].add(match.group("name"))
                break
    return found


def _describe(verb: str, kind: str, names: set[str]) -> str:
    ordered = ", ".join(f"`{name}`" for name in sorted(names))
    noun = kind if len(names) == 1 else f"{kind}s"
    if kind == "class" and len(names) > 1:
        noun = "classes"
    return f"{verb} {noun} {ordered}"


def summarize_changes(original: str, updated: str, path: str = "file") -> ChangeSummary:
    """Summarize what changed between two versions of ``path``."""
    added, removed = _changed_lines(original, updated)
    formatted = format_unified_diff(path, original, updated) if original != updated else ""

    added_decls = _declarations(added)
    removed_decls = _declarations(removed)
    parts: List[str] = []
    for kind in _KIND_ORDER:
        both = added_decls[kind] & removed_decls[kind]
        only_added = added_decls[kind] - both
        only_removed = removed_decls[kind] - both
        if only_added:
            parts.append(_describe("added", kind, only_added))
        if both:
            parts.append(_describe("modified", kind, both))
        if only_removed:
            parts.append(_describe("removed", kind, only_removed))

    if parts:
        text = "; ".join(parts)
        summary = f"{text[0].upper()}{text[1:]} in {path}"
    elif not added and not removed:
        summary = f"No significant changes in {path}"
    elif len(added) + len(removed) > MAJOR_CHANGE_THRESHOLD:
        summary = f"Major changes detected in {path} (+{len(added)}/-{len(removed)} lines)"
    elif not original:
        summary = f"Created {path} ({len(added)} lines)"
    else:
        summary = f"Modified {path} (+{len(added)}/-{len(removed)} lines)"

    return ChangeSummary(
        summary=summary,
        added_lines=added,
        removed_lines=removed,
        formatted_diff=formatted,
    )
