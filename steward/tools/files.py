"""File tools: read, write, edit, glob and grep.

Executors validate their own input and raise on failure; the agent loop
turns the exception into an error-flagged tool result.
"""

from __future__ import annotations

import os
import re

from ..host import HostEnvironment
from ..limits import get_limit
from ..llm.base import ToolDefinition

# Guards against symlink loops when walking directories for grep
MAX_WALK_DEPTH = 20


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------

READ_FILE = ToolDefinition(
    name="read_file",
    description="Read the contents of a file. Returns the file content with line numbers.",
    input_schema={
        "type": "object",
        "properties": {
            "file_path": {"type": "string", "description": "Path to the file to read"},
            "offset": {"type": "integer", "description": "Line number to start reading from (1-based)"},
            "limit": {"type": "integer", "description": "Maximum number of lines to read"},
        },
        "required": ["file_path"],
    },
)

WRITE_FILE = ToolDefinition(
    name="write_file",
    description="Create or overwrite a file with the given content. Creates parent directories if needed.",
    input_schema={
        "type": "object",
        "properties": {
            "file_path": {"type": "string", "description": "Path to write to"},
            "content": {"type": "string", "description": "Content to write"},
        },
        "required": ["file_path", "content"],
    },
)

EDIT_FILE = ToolDefinition(
    name="edit_file",
    description=(
        "Make a surgical edit to a file by replacing an exact string match with "
        "new content. The old_string must match exactly once in the file."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "file_path": {"type": "string", "description": "Path to the file to edit"},
            "old_string": {"type": "string", "description": "Exact string to find (must match uniquely)"},
            "new_string": {"type": "string", "description": "Replacement string"},
        },
        "required": ["file_path", "old_string", "new_string"],
    },
)

GLOB = ToolDefinition(
    name="glob",
    description='Find files matching a glob pattern (e.g. "**/*.py", "src/**/*.js").',
    input_schema={
        "type": "object",
        "properties": {
            "pattern": {"type": "string", "description": "Glob pattern to match"},
            "path": {"type": "string", "description": "Base directory to search from"},
        },
        "required": ["pattern"],
    },
)

GREP = ToolDefinition(
    name="grep",
    description=(
        "Search file contents using a regular expression. Returns matching lines "
        "as path:line:text."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "pattern": {"type": "string", "description": "Regular expression pattern to search for"},
            "path": {"type": "string", "description": "File or directory to search in (defaults to the working directory)"},
            "glob": {"type": "string", "description": 'Glob pattern to filter files (e.g. "*.py")'},
            "case_insensitive": {"type": "boolean", "description": "Case insensitive search (default false)"},
            "max_results": {"type": "integer", "description": "Maximum number of matching lines to return (default 100)"},
        },
        "required": ["pattern"],
    },
)


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------

def _require_str(tool_input: dict, key: str) -> str:
    value = tool_input.get(key)
    if not isinstance(value, str):
        raise ValueError(f"'{key}' must be a string")
    return value


def execute_read_file(tool_input: dict, host: HostEnvironment) -> str:
    resolved = host.resolve_path(_require_str(tool_input, "file_path"))
    lines = host.read_file(resolved).split("\n")

    start = max(int(tool_input.get("offset") or 1), 1) - 1
    limit = tool_input.get("limit")
    end = start + int(limit) if limit else len(lines)
    return "\n".join(
        f"{start + i + 1:>6}\t{line}" for i, line in enumerate(lines[start:end])
    )


def execute_write_file(tool_input: dict, host: HostEnvironment) -> str:
    resolved = host.resolve_path(_require_str(tool_input, "file_path"))
    content = _require_str(tool_input, "content")

    parent = os.path.dirname(resolved)
    if parent and not host.exists(parent):
        host.mkdir(parent, recursive=True)
    host.write_file(resolved, content)
    return f"Successfully wrote to {resolved}"


def execute_edit_file(tool_input: dict, host: HostEnvironment) -> str:
    resolved = host.resolve_path(_require_str(tool_input, "file_path"))
    old_string = _require_str(tool_input, "old_string")
    new_string = _require_str(tool_input, "new_string")
    if not old_string:
        raise ValueError("'old_string' must not be empty")

    content = host.read_file(resolved)
    occurrences = content.count(old_string)
    if occurrences == 0:
        raise ValueError(f"old_string not found in {resolved}")
    if occurrences > 1:
        raise ValueError(
            f"old_string found {occurrences} times in {resolved}. Must match exactly once. "
            "Add more surrounding context to make it unique."
        )

    host.write_file(resolved, content.replace(old_string, new_string, 1))
    return f"Successfully edited {resolved}"


def execute_glob(tool_input: dict, host: HostEnvironment) -> str:
    pattern = _require_str(tool_input, "pattern")
    base = host.resolve_path(tool_input["path"]) if tool_input.get("path") else host.get_cwd()
    results = host.glob(pattern, base)
    if not results:
        return "No files found"
    return "\n".join(results)


def _collect_files(host: HostEnvironment, dir_path: str, depth: int, visited: set[str]) -> list[str]:
    if depth > MAX_WALK_DEPTH or dir_path in visited:
        return []
    visited.add(dir_path)
    try:
        entries = host.readdir(dir_path)
    except OSError:
        return []
    files: list[str] = []
    for entry in entries:
        if entry.type == "file":
            files.append(entry.path)
        elif entry.type == "dir":
            files.extend(_collect_files(host, entry.path, depth + 1, visited))
    return files


def _search_file(host: HostEnvironment, path: str, regex: re.Pattern,
                 max_results: int, results: list[str]) -> None:
    try:
        content = host.read_file(path)
    except (OSError, UnicodeDecodeError):
        return  # unreadable files are skipped
    for lineno, line in enumerate(content.split("\n"), start=1):
        if len(results) >= max_results:
            return
        if regex.search(line):
            results.append(f"{path}:{lineno}:{line}")


def execute_grep(tool_input: dict, host: HostEnvironment) -> str:
    pattern = _require_str(tool_input, "pattern")
    flags = re.IGNORECASE if tool_input.get("case_insensitive") else 0
    try:
        regex = re.compile(pattern, flags)
    except re.error as e:
        raise ValueError(f'invalid regex pattern "{pattern}": {e}') from e

    base = host.resolve_path(tool_input["path"]) if tool_input.get("path") else host.get_cwd()
    max_results = int(tool_input.get("max_results") or get_limit("tool.grep_max_results"))
    results: list[str] = []

    if host.stat(base).is_file():
        _search_file(host, base, regex, max_results, results)
    else:
        if tool_input.get("glob"):
            files = [
                f if os.path.isabs(f) else os.path.join(base, f)
                for f in host.glob(tool_input["glob"], base)
            ]
        else:
            files = _collect_files(host, base, 0, set())
        for path in files:
            if len(results) >= max_results:
                break
            _search_file(host, path, regex, max_results, results)

    if not results:
        return "No matches found"
    suffix = f"\n(results truncated at {max_results} matches)" if len(results) >= max_results else ""
    return "\n".join(results) + suffix
