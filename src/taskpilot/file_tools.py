"""
The ``file`` tool: read, write, diff and patch files in the workspace.

Paths are relative to the workspace root (absolute paths are accepted if
they point inside it). The read-patch-write sequence for one path runs
under a per-path lock so two runs sharing this tool cannot interleave
edits to the same file. Writers in other processes are not covered.
"""

import logging
import threading
from collections import defaultdict
from pathlib import Path
from typing import TYPE_CHECKING

from taskpilot.errors import PatchConflictError, ToolExecutionError
from taskpilot.patch import PatchResult, apply_patch, apply_sequential, create_patch
from taskpilot.tools import ActionTool, ToolAction
from taskpilot.types import ToolResult

if TYPE_CHECKING:
    from taskpilot.context import RunContext

logger = logging.getLogger(__name__)


class PathLocks:
    """One lock per resolved path, created on first use."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = defaultdict(threading.Lock)

    def get_lock(self, path: Path) -> threading.Lock:
        with self._guard:
            return self._locks[str(path)]


def resolve_workspace_path(workspace: Path, file_path: str) -> Path:
    """
    Resolve ``file_path`` against the workspace root.

    Raises:
        ToolExecutionError: if the path is empty or resolves outside the workspace
    """
    if not file_path or not isinstance(file_path, str):
        raise ToolExecutionError("'filePath' must be a non-empty string.")
    root = workspace.expanduser().resolve()
    candidate = Path(file_path).expanduser()
    if not candidate.is_absolute():
        candidate = root / candidate
    resolved = candidate.resolve()
    if not resolved.is_relative_to(root):
        raise ToolExecutionError(f"Path '{file_path}' is outside the workspace.")
    return resolved


def _read(path: Path) -> str:
    with open(path, encoding="utf-8", newline="") as f:
        return f.read()


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(content)


def _read_or_empty(path: Path) -> str:
    try:
        return _read(path)
    except FileNotFoundError:
        logger.debug(f"File {path} not found, using empty content.")
        return ""


_FILE_PATH = {"type": "string", "description": "Path to the file, relative to the workspace root."}


class FileSystemTool(ActionTool):
    """Read, write, diff and patch workspace files."""

    def __init__(self) -> None:
        super().__init__(
            tool_id="file",
            description="Provides actions to read, write, diff, and patch files in the workspace.",
        )
        self.locks = PathLocks()

        self.add_action(ToolAction(
            name="readFile",
            description="Reads the content of a specified file.",
            parameters={
                "type": "object",
                "properties": {"filePath": _FILE_PATH},
                "required": ["filePath"],
            },
            handler=self.read_file,
        ))
        self.add_action(ToolAction(
            name="writeFile",
            description="Writes content to a file, overwriting existing content. Creates the file if it does not exist.",
            parameters={
                "type": "object",
                "properties": {
                    "filePath": _FILE_PATH,
                    "content": {"type": "string", "description": "The content to write to the file."},
                },
                "required": ["filePath", "content"],
            },
            handler=self.write_file,
        ))
        self.add_action(ToolAction(
            name="createDiff",
            description="Creates a unified diff patch between the content of a file and new provided content.",
            parameters={
                "type": "object",
                "properties": {
                    "filePath": _FILE_PATH,
                    "newContent": {"type": "string", "description": "The proposed new content for the file."},
                },
                "required": ["filePath", "newContent"],
            },
            handler=self.create_diff,
        ))
        self.add_action(ToolAction(
            name="applyDiff",
            description=(
                "Applies a unified diff patch to a file. The file content should match "
                "the state the patch was created against."
            ),
            parameters={
                "type": "object",
                "properties": {
                    "filePath": _FILE_PATH,
                    "patch": {"type": "string", "description": "The unified diff patch string."},
                },
                "required": ["filePath", "patch"],
            },
            handler=self.apply_diff,
        ))
        self.add_action(ToolAction(
            name="applyDiffs",
            description=(
                "Applies several unified diff patches in order, each to the result of the previous one. "
                "Nothing is written unless every patch applies."
            ),
            parameters={
                "type": "object",
                "properties": {
                    "filePath": _FILE_PATH,
                    "patches": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["filePath", "patches"],
            },
            handler=self.apply_diffs,
        ))

    def read_file(self, context: "RunContext", filePath: str) -> ToolResult:
        path = resolve_workspace_path(context.engine.config.workspace, filePath)
        try:
            content = _read(path)
        except FileNotFoundError:
            return ToolResult.fail(f"File not found: {filePath}")
        except IsADirectoryError:
            return ToolResult.fail(f"Not a file: {filePath}")
        logger.info(f"Read {len(content)} characters from {path}")
        return ToolResult.ok(content)

    def write_file(self, context: "RunContext", filePath: str, content: str) -> ToolResult:
        if not isinstance(content, str):
            return ToolResult.fail("'content' must be a string.")
        path = resolve_workspace_path(context.engine.config.workspace, filePath)
        with self.locks.get_lock(path):
            _write(path, content)
        logger.info(f"Wrote {len(content)} characters to {path}")
        return ToolResult.ok(f"File {filePath} written successfully.")

    def create_diff(self, context: "RunContext", filePath: str, newContent: str) -> ToolResult:
        if not isinstance(newContent, str):
            return ToolResult.fail("'newContent' must be a string.")
        path = resolve_workspace_path(context.engine.config.workspace, filePath)
        with self.locks.get_lock(path):
            original = _read_or_empty(path)
        patch = create_patch(
            filePath,
            filePath,
            original,
            newContent,
            context_lines=context.engine.config.patch.context_lines,
        )
        logger.info(f"Created diff patch for {filePath}")
        return ToolResult.ok(patch)

    def apply_diff(self, context: "RunContext", filePath: str, patch: str) -> ToolResult:
        if not isinstance(patch, str) or not patch:
            return ToolResult.fail("'patch' must be a non-empty string.")
        fuzz = context.engine.config.patch.fuzz_factor
        return self._patch_file(
            context, filePath, lambda base: apply_patch(patch, base, fuzz_factor=fuzz)
        )

    def apply_diffs(self, context: "RunContext", filePath: str, patches: list[str]) -> ToolResult:
        if not isinstance(patches, list) or not all(isinstance(p, str) for p in patches):
            return ToolResult.fail("'patches' must be a list of strings.")
        fuzz = context.engine.config.patch.fuzz_factor
        return self._patch_file(
            context, filePath, lambda base: apply_sequential(patches, base, fuzz_factor=fuzz)
        )

    def _patch_file(self, context: "RunContext", filePath: str, apply) -> ToolResult:
        path = resolve_workspace_path(context.engine.config.workspace, filePath)
        try:
            with self.locks.get_lock(path):
                base = _read_or_empty(path)
                result: PatchResult = apply(base)
                if not result.ok:
                    raise PatchConflictError(
                        f"Patch could not be applied cleanly to {filePath}: {result.error}",
                        hunk_index=result.failed_hunk,
                    )
                if result.already_applied:
                    logger.info(f"Patch already present in {path}; file left unchanged")
                    return ToolResult.ok(f"Patch already applied to {filePath}; file unchanged.")
                _write(path, result.text or "")
        except PatchConflictError as e:
            logger.warning(str(e))
            return ToolResult.fail(str(e))

        logger.info(f"Applied patch to {path}")
        return ToolResult.ok(f"Patch applied successfully to {filePath}.")
