"""Relevant-file snippets embedded in generation prompts."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from ..cancellation import CancellationToken

__all__ = [
    "DEFAULT_MAX_SNIPPET_BYTES",
    "Snippet",
    "collect_relevant_files",
    "format_relevant_files",
]


LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_SNIPPET_BYTES = 1024 * 1024

_LANGUAGE_ALIASES = {
    "jsonc": "json",
    "eslintignore": "ignore",
    "prettierignore": "ignore",
    "gitignore": "ignore",
    "license": "plaintext",
}


@dataclass(slots=True)
class Snippet:
    """Captured relevant file, or the reason it was skipped."""

    path: str
    language: str
    content: str
    skipped: bool = False

    def render(self) -> str:
        return f"--- Relevant File: {self.path} ---\n```{self.language}\n{self.content}\n```\n"


def _language_for(relative_path: str) -> str:
    candidate = Path(relative_path)
    language = candidate.suffix[1:] or candidate.name.lower()
    return _LANGUAGE_ALIASES.get(language, language)


def _resolve(repo_root: Path, requested: str) -> Path | None:
    """Return an absolute path inside ``repo_root`` for a relative request."""
    candidate = Path(requested.strip().replace("\\", "/"))
    try:
        if candidate.is_absolute():
            candidate = candidate.resolve()
        else:
            candidate = (repo_root / candidate).resolve()
        candidate.relative_to(repo_root)
    except ValueError:
        return None
    return candidate


def collect_relevant_files(
    repo_root: Path,
    paths: Iterable[str],
    *,
    max_bytes: int = DEFAULT_MAX_SNIPPET_BYTES,
    cancel: CancellationToken | None = None,
) -> list[Snippet]:
    """Read each requested file, skipping directories and replacing oversize or binary files with a note.

    Missing or unreadable files are reported in place so the model knows the
    context was incomplete. Cancellation stops collection and returns what
    was gathered so far.
    """

    repo_root = repo_root.resolve()
    snippets: list[Snippet] = []
    seen: set[str] = set()
    for requested in paths:
        if cancel is not None and cancel.cancelled:
            break
        relative = requested.strip()
        if not relative or relative in seen:
            continue
        seen.add(relative)

        resolved = _resolve(repo_root, relative)
        if resolved is None:
            LOGGER.warning("Relevant file '%s' resolves outside the workspace. Skipping.", relative)
            continue
        if resolved.is_dir():
            continue
        try:
            size = resolved.stat().st_size
            if size > max_bytes:
                LOGGER.warning(
                    "Skipping relevant file '%s' (size: %d bytes) due to size limit for prompt inclusion.",
                    relative,
                    size,
                )
                snippets.append(
                    Snippet(
                        path=relative,
                        language="plaintext",
                        content=(
                            f"[File skipped: too large for context ({size / 1024:.2f}KB > "
                            f"{max_bytes / 1024:.2f}KB)]"
                        ),
                        skipped=True,
                    )
                )
                continue
            content = resolved.read_bytes().decode("utf-8", errors="replace")
        except OSError as error:
            LOGGER.warning("Error reading relevant file '%s': %s. Skipping.", relative, error)
            snippets.append(
                Snippet(
                    path=relative,
                    language="plaintext",
                    content=f"[File skipped: could not be read or is inaccessible: {error}]",
                    skipped=True,
                )
            )
            continue

        if "\0" in content:
            LOGGER.warning("Skipping relevant file '%s' as it appears to be binary.", relative)
            snippets.append(
                Snippet(
                    path=relative,
                    language="plaintext",
                    content="[File skipped: appears to be binary]",
                    skipped=True,
                )
            )
            continue

        snippets.append(Snippet(path=relative, language=_language_for(relative), content=content))
    return snippets


def format_relevant_files(snippets: Iterable[Snippet]) -> str:
    return "\n".join(snippet.render() for snippet in snippets)
