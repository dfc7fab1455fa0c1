"""System-message generation for chat requests."""

from __future__ import annotations

import platform
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Protocol, Sequence

import structlog

log = structlog.get_logger()

RULES_FILENAME = ".rules"

AGENT_MODES = frozenset({"agent", "gather"})

MAX_DIRECTORY_CHARS = 20_000

EXCLUDED_DIRECTORIES = frozenset({
    "node_modules", "dist", "build", "out", "bin", "coverage", "__pycache__",
    "env", "venv", "tmp", "temp", "artifacts", "target", "obj", "vendor",
    "logs", "cache", "resource", "resources",
})

_HEADER = """\
You are an expert coding {role} whose job is {job}
You will be given instructions to follow from the user, and you may also be \
given a list of files that the user has specifically selected for context, \
`SELECTIONS`.
Please assist the user with their query."""

_JOBS = {
    "agent": "to help the user develop, run, and make changes to their codebase.",
    "gather": "to search, understand, and reference files in the user's codebase.",
}
_DEFAULT_JOB = "to assist the user with their coding tasks."

_SYSTEM_INFO = """\
Here is the user's system information:
<system_info>
- Operating System: {os}
- Current date/time: {now}

- The user's workspace contains these folders:
{folders}

- Active file:
{active}

- Open files:
{opened}{terminals}
</system_info>"""

_FILES_OVERVIEW = """\
Here is an overview of the user's file system:
<files_overview>
{directory_str}
</files_overview>"""

_XML_TOOLS = """\
Tools are called by writing XML in your reply, one call per message, for example:
<read_file>
<uri>path/to/file</uri>
</read_file>
The result comes back in the next user message as <read_file_result>...</read_file_result>."""


@dataclass
class WorkspaceInfo:
    folders: list[str] = field(default_factory=list)
    opened_files: list[str] = field(default_factory=list)
    active_file: str | None = None
    persistent_terminal_ids: list[str] = field(default_factory=list)
    mcp_tools_count: int = 0


class DirectoryLister(Protocol):
    def list_directories(self, folders: Sequence[str], cut_off_message: str) -> str: ...


class SystemPromptBuilder(Protocol):
    def build(
        self,
        workspace: WorkspaceInfo,
        chat_mode: str,
        directory_str: str,
        include_xml_tool_definitions: bool,
    ) -> str: ...


def cut_off_message(chat_mode: str) -> str:
    if chat_mode in AGENT_MODES:
        return "...Directories string cut off, use tools to read more..."
    return "...Directories string cut off, ask user for more if necessary..."


def directory_fallback(folders: Sequence[str]) -> str:
    """Used when the directory listing fails or takes too long."""
    if folders:
        return (
            f"Workspace: {', '.join(folders)}\n"
            "(Directory listing unavailable - use list_dir tool if needed)"
        )
    return "(NO WORKSPACE OPEN)"


def is_excluded_directory(name: str) -> bool:
    return name.startswith(".") or name in EXCLUDED_DIRECTORIES


class FilesystemDirectoryLister:
    """Indented tree of each workspace folder, cut at ``max_chars``."""

    def __init__(self, max_chars: int = MAX_DIRECTORY_CHARS, max_depth: int = 3) -> None:
        self.max_chars = max_chars
        self.max_depth = max_depth

    def _walk(self, directory: Path, depth: int, lines: list[str]) -> None:
        try:
            entries = sorted(directory.iterdir(), key=lambda p: (not p.is_dir(), p.name.lower()))
        except OSError:
            return
        for entry in entries:
            if entry.is_dir():
                if is_excluded_directory(entry.name):
                    continue
                lines.append(f"{'  ' * depth}{entry.name}/")
                if depth + 1 < self.max_depth:
                    self._walk(entry, depth + 1, lines)
            else:
                lines.append(f"{'  ' * depth}{entry.name}")

    def list_directories(self, folders: Sequence[str], cut_off_message: str) -> str:
        lines: list[str] = []
        for folder in folders:
            lines.append(f"{folder}/")
            self._walk(Path(folder), 1, lines)

        text = "\n".join(lines)
        if len(text) > self.max_chars:
            text = text[: self.max_chars].rsplit("\n", 1)[0] + "\n" + cut_off_message
        return text


class DefaultSystemPromptBuilder:
    def build(
        self,
        workspace: WorkspaceInfo,
        chat_mode: str,
        directory_str: str,
        include_xml_tool_definitions: bool,
    ) -> str:
        header = _HEADER.format(
            role="agent" if chat_mode == "agent" else "assistant",
            job=_JOBS.get(chat_mode, _DEFAULT_JOB),
        )
        terminals = ""
        if chat_mode == "agent" and workspace.persistent_terminal_ids:
            terminals = (
                "\n\n- Persistent terminal IDs available for you to run commands in: "
                + ", ".join(workspace.persistent_terminal_ids)
            )
        sys_info = _SYSTEM_INFO.format(
            os=platform.system() or "unknown",
            now=datetime.now().strftime("%Y-%m-%d %H:%M"),
            folders="\n".join(workspace.folders) or "NO FOLDERS OPEN",
            active=workspace.active_file or "NO ACTIVE FILE",
            opened="\n".join(workspace.opened_files) or "NO OPENED FILES",
            terminals=terminals,
        )

        sections = [header, sys_info]
        if include_xml_tool_definitions:
            sections.append(_XML_TOOLS)
        if directory_str:
            sections.append(_FILES_OVERVIEW.format(directory_str=directory_str))
        return "\n\n\n".join(sections)


def read_rules_files(folders: Sequence[str], filename: str = RULES_FILENAME) -> str:
    """Concatenated contents of the rules file in each workspace folder."""
    contents = []
    for folder in folders:
        path = Path(folder) / filename
        try:
            contents.append(path.read_text(encoding="utf-8"))
        except (FileNotFoundError, IsADirectoryError):
            continue
        except (OSError, UnicodeDecodeError) as e:
            log.warning("rules_file_unreadable", path=str(path), error=str(e))
            continue
    return "\n\n".join(c.strip() for c in contents if c.strip())


def combine_ai_instructions(global_instructions: str | None, rules_text: str | None) -> str:
    parts = [p for p in (global_instructions, rules_text) if p]
    return "\n\n".join(parts)
