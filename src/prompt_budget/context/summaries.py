"""Structural summaries for old tool outputs.

Each summarizer is a pure ``(text, ...) -> str`` function.  Identifier
extraction for file reads is a lightweight, per-language regex scan over
top-level declarations; it is not a parser and is allowed to miss things.
New languages are added by registering patterns in ``IDENTIFIER_PATTERNS``.
"""

from __future__ import annotations

import re
from pathlib import PurePosixPath

# export [default] function|class|interface|type|const|let|var|enum|abstract Name
_TS_EXPORT_RE = re.compile(
    r"^export\s+(?:default\s+)?(?:function|class|interface|type|const|let|var|enum|abstract)\s+(\w+)"
)
_TS_DECL_RE = re.compile(r"^(?:async\s+)?(?:function|class|interface)\s+(\w+)")
# const Foo = (...) / const Foo: React.FC = ...
_TS_COMPONENT_RE = re.compile(r"^(?:export\s+)?(?:const|function)\s+(\w+)\s*[=:]\s*(?:\(|React)")

_PY_DEF_RE = re.compile(r"^(?:async\s+)?def\s+(\w+)")
_PY_CLASS_RE = re.compile(r"^class\s+(\w+)")
_PY_CONST_RE = re.compile(r"^([A-Z][A-Z0-9_]*)\s*(?::[^=]+)?=")

IDENTIFIER_PATTERNS: dict[str, list[re.Pattern[str]]] = {
    "typescript": [_TS_EXPORT_RE, _TS_DECL_RE, _TS_COMPONENT_RE],
    "python": [_PY_DEF_RE, _PY_CLASS_RE, _PY_CONST_RE],
}

_EXTENSION_LANGUAGES = {
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "typescript",
    ".jsx": "typescript",
    ".mjs": "typescript",
    ".cjs": "typescript",
    ".py": "python",
    ".pyi": "python",
}

DEFAULT_LANGUAGE = "typescript"


def guess_language(path: str) -> str:
    """Map a file path to a key of IDENTIFIER_PATTERNS."""
    suffix = PurePosixPath(path.strip().replace("\\", "/")).suffix.lower()
    return _EXTENSION_LANGUAGES.get(suffix, DEFAULT_LANGUAGE)


def extract_identifiers(text: str, language: str, limit: int = 20) -> list[str]:
    """Names of top-level declarations, in source order, at most ``limit``."""
    patterns = IDENTIFIER_PATTERNS.get(language, IDENTIFIER_PATTERNS[DEFAULT_LANGUAGE])
    found: list[str] = []
    for line in text.split("\n"):
        if len(found) >= limit:
            break
        for pattern in patterns:
            m = pattern.match(line)
            if m:
                found.append(m.group(1))
                break
    return found


def head_tail(content: str, max_len: int, marker: str, head_ratio: float = 0.6, tail_ratio: float = 0.3) -> str:
    """Keep the start and end of ``content`` around a marker."""
    if len(content) <= max_len:
        return content
    head = int(max_len * head_ratio)
    tail = int(max_len * tail_ratio)
    return content[:head] + marker + (content[-tail:] if tail > 0 else "")


def summarize_file_read(content: str, max_identifiers: int = 20) -> str:
    """``path (N lines)`` plus key identifiers.  First line holds the path."""
    lines = content.split("\n")
    file_path = lines[0] if lines else ""
    identifiers = extract_identifiers(content, guess_language(file_path), max_identifiers)
    identifier_str = f"\nKey identifiers: {', '.join(identifiers)}" if identifiers else ""
    return (
        f"[Previously read] {file_path} ({len(lines)} lines){identifier_str}\n"
        "(Use read_file to re-read if needed)"
    )


def summarize_search_results(content: str, sample: int = 8) -> str:
    lines = [line for line in content.split("\n") if line.strip()]
    if len(lines) <= sample + 2:
        return content
    return (
        f"[Search results: {len(lines)} files]\n"
        + "\n".join(lines[:sample])
        + f"\n... and {len(lines) - sample} more files"
    )


def summarize_directory_listing(content: str, head: int = 12) -> str:
    lines = content.split("\n")
    if len(lines) <= head + 3:
        return content
    return "\n".join(lines[:head]) + f"\n... [{len(lines) - head} more entries]"


def summarize_command_output(content: str, head: int = 8, tail: int = 8) -> str | None:
    """Head and tail lines of command output; None when it is already short."""
    lines = content.split("\n")
    if len(lines) <= 20:
        return None
    omitted = len(lines) - head - tail
    return (
        "\n".join(lines[:head])
        + f"\n...[{omitted} lines omitted]...\n"
        + "\n".join(lines[-tail:])
    )
