"""
Diff/Patch engine.

Pure functions over text that create and apply standard unified diffs.
Line endings are normalized to LF before diffing or patching. Applying a
patch never raises on a conflict: a hunk that cannot be located is an
expected outcome (the target drifted since the patch was generated) and is
reported as a failed PatchResult.

Hunks are located by searching outward from their recorded offset. With
fuzz_factor=0 every context and removed line must match exactly; a higher
fuzz factor lets that many lines per hunk differ. A patch whose new side is
already present in the target is treated as applied and returns the target
unchanged, so re-applying a patch to its own output never duplicates edits.
"""

import difflib
import logging
import re
from dataclasses import dataclass, field

from taskpilot.errors import PatchParseError

logger = logging.getLogger(__name__)

NO_NEWLINE_MARKER = "\\ No newline at end of file"

_HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@(.*)$")


def normalize_newlines(text: str) -> str:
    """Convert CRLF line endings to LF."""
    return text.replace("\r\n", "\n")


def _split_keepends(text: str) -> list[str]:
    # str.splitlines also breaks on form feeds and unicode separators; only \n counts here
    parts = text.split("\n")
    lines = [part + "\n" for part in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


@dataclass
class HunkLine:
    op: str  # " ", "+" or "-"
    text: str
    no_newline: bool = False


@dataclass
class Hunk:
    """One ``@@ -l,n +l,n @@`` block."""
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: list[HunkLine] = field(default_factory=list)
    section: str = ""

    @property
    def header(self) -> str:
        return f"@@ -{self.old_start},{self.old_count} +{self.new_start},{self.new_count} @@"

    @property
    def old_lines(self) -> list[str]:
        return [ln.text for ln in self.lines if ln.op in (" ", "-")]

    @property
    def new_lines(self) -> list[str]:
        return [ln.text for ln in self.lines if ln.op in (" ", "+")]

    @property
    def old_no_newline(self) -> bool:
        return any(ln.no_newline for ln in self.lines if ln.op in (" ", "-"))

    @property
    def new_no_newline(self) -> bool:
        return any(ln.no_newline for ln in self.lines if ln.op in (" ", "+"))

    @property
    def leading_context(self) -> int:
        count = 0
        for ln in self.lines:
            if ln.op != " ":
                break
            count += 1
        return count

    @property
    def trailing_context(self) -> int:
        count = 0
        for ln in reversed(self.lines):
            if ln.op != " ":
                break
            count += 1
        return count

    @property
    def old_position(self) -> int:
        """0-based index where the old block starts in the original text."""
        return self.old_start - 1 if self.old_count > 0 else self.old_start

    @property
    def new_position(self) -> int:
        return self.new_start - 1 if self.new_count > 0 else self.new_start


@dataclass
class FilePatch:
    old_label: str | None
    new_label: str | None
    hunks: list[Hunk] = field(default_factory=list)


@dataclass
class PatchSet:
    """Unified diff text together with its parsed file patches."""
    text: str
    files: list[FilePatch] = field(default_factory=list)

    @property
    def hunks(self) -> list[Hunk]:
        return [h for f in self.files for h in f.hunks]


@dataclass
class PatchResult:
    """
    Outcome of applying one or more patches.

    On success ``text`` holds the new content. On failure ``text`` is None,
    ``error`` describes the conflict, ``failed_hunk`` names the hunk and,
    for sequential application, ``failed_index`` names the patch.
    """
    ok: bool
    text: str | None = None
    error: str | None = None
    failed_hunk: int | None = None
    failed_index: int | None = None
    already_applied: bool = False

    @classmethod
    def success(cls, text: str, already_applied: bool = False) -> "PatchResult":
        return cls(ok=True, text=text, already_applied=already_applied)

    @classmethod
    def failure(cls, error: str, failed_hunk: int | None = None) -> "PatchResult":
        return cls(ok=False, error=error, failed_hunk=failed_hunk)


def create_patch(
    old_label: str,
    new_label: str,
    old_text: str,
    new_text: str,
    context_lines: int = 3,
) -> str:
    """
    Create a unified diff turning ``old_text`` into ``new_text``.

    Identical inputs produce a header-only patch with no hunks.
    """
    old_lines = _split_keepends(normalize_newlines(old_text))
    new_lines = _split_keepends(normalize_newlines(new_text))

    out = [f"--- {old_label}\n", f"+++ {new_label}\n"]
    diff = difflib.unified_diff(old_lines, new_lines, n=context_lines, lineterm="\n")
    for index, line in enumerate(diff):
        if index < 2:
            # difflib's own file headers; ours are already written
            continue
        if line.endswith("\n"):
            out.append(line)
        else:
            out.append(line + "\n")
            out.append(NO_NEWLINE_MARKER + "\n")

    logger.debug(f"Created patch {old_label} -> {new_label} ({len(out) - 2} lines)")
    return "".join(out)


def parse_patch(patch_text: str) -> PatchSet:
    """
    Parse unified diff text.

    Raises PatchParseError on a malformed hunk header or a hunk whose body
    does not match its line counts.
    """
    text = patch_text
    if text.count("\r\n") == text.count("\n"):
        # a patch written with CRLF throughout; a lone \r\n elsewhere is content
        text = normalize_newlines(text)
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()

    patch_set = PatchSet(text=patch_text)
    current: FilePatch | None = None
    i = 0
    while i < len(lines):
        line = lines[i]

        if line.startswith("--- ") and i + 1 < len(lines) and lines[i + 1].startswith("+++ "):
            current = FilePatch(
                old_label=_strip_label(line[4:]),
                new_label=_strip_label(lines[i + 1][4:]),
            )
            patch_set.files.append(current)
            i += 2
            continue

        if line.startswith("@@"):
            match = _HUNK_HEADER.match(line)
            if match is None:
                raise PatchParseError(f"Malformed hunk header: {line!r}")
            if current is None:
                current = FilePatch(old_label=None, new_label=None)
                patch_set.files.append(current)
            hunk = Hunk(
                old_start=int(match.group(1)),
                old_count=int(match.group(2)) if match.group(2) is not None else 1,
                new_start=int(match.group(3)),
                new_count=int(match.group(4)) if match.group(4) is not None else 1,
                section=match.group(5).strip(),
            )
            i = _read_hunk_body(lines, i + 1, hunk)
            current.hunks.append(hunk)
            continue

        # Index:, ===, diff --git and other preamble lines
        i += 1

    return patch_set


def _strip_label(label: str) -> str:
    # "path\t2024-01-01 00:00:00" -> "path"
    return label.split("\t", 1)[0].strip()


def _read_hunk_body(lines: list[str], i: int, hunk: Hunk) -> int:
    old_seen = 0
    new_seen = 0
    while i < len(lines) and (old_seen < hunk.old_count or new_seen < hunk.new_count):
        line = lines[i]
        if line.startswith("\\"):
            if hunk.lines:
                hunk.lines[-1].no_newline = True
            i += 1
            continue
        if line.startswith("@@") or (line.startswith("--- ") and old_seen >= hunk.old_count):
            break
        op = line[:1] if line else " "
        if op not in (" ", "+", "-"):
            raise PatchParseError(f"Invalid line in hunk {hunk.header}: {line!r}")
        hunk.lines.append(HunkLine(op=op, text=line[1:]))
        if op in (" ", "-"):
            old_seen += 1
        if op in (" ", "+"):
            new_seen += 1
        i += 1

    if old_seen != hunk.old_count or new_seen != hunk.new_count:
        raise PatchParseError(
            f"Hunk {hunk.header} has {old_seen} old / {new_seen} new lines, "
            f"expected {hunk.old_count} / {hunk.new_count}"
        )

    if i < len(lines) and lines[i].startswith("\\"):
        if hunk.lines:
            hunk.lines[-1].no_newline = True
        i += 1
    return i


@dataclass
class _Text:
    lines: list[str]
    ends_with_newline: bool

    @classmethod
    def from_string(cls, text: str) -> "_Text":
        text = normalize_newlines(text)
        if text == "":
            return cls(lines=[], ends_with_newline=True)
        lines = text.split("\n")
        if lines[-1] == "":
            lines.pop()
            return cls(lines=lines, ends_with_newline=True)
        return cls(lines=lines, ends_with_newline=False)

    def to_string(self) -> str:
        if not self.lines:
            return ""
        body = "\n".join(self.lines)
        return body + "\n" if self.ends_with_newline else body


def _context_size(hunks: list[Hunk]) -> int:
    size = 0
    for hunk in hunks:
        size = max(size, hunk.leading_context, hunk.trailing_context)
    return size


def _anchors(hunks: list[Hunk], index: int) -> tuple[bool, bool]:
    """
    Whether hunk ``index`` is pinned to the start and/or end of the file.

    Generators emit a fixed number of context lines on each side of a
    change unless the file runs out, so a first hunk with less leading
    context starts the file and a last hunk with less trailing context
    ends it.
    """
    size = _context_size(hunks)
    hunk = hunks[index]
    at_start = index == 0 and size > 0 and hunk.leading_context < size
    at_end = index == len(hunks) - 1 and size > 0 and hunk.trailing_context < size
    if hunk.old_no_newline or hunk.new_no_newline:
        at_end = True
    return at_start, at_end


def _block_matches(
    lines: list[str],
    block: list[str],
    pos: int,
    fuzz_factor: int,
    at_start: bool,
    at_end: bool,
) -> bool:
    if pos < 0 or pos + len(block) > len(lines):
        return False
    if at_start and pos != 0:
        return False
    if at_end and pos + len(block) != len(lines):
        return False
    mismatches = 0
    for offset, expected in enumerate(block):
        if lines[pos + offset] != expected:
            mismatches += 1
            if mismatches > fuzz_factor:
                return False
    return True


def _is_already_applied(text: _Text, hunks: list[Hunk]) -> bool:
    for index, hunk in enumerate(hunks):
        at_start, at_end = _anchors(hunks, index)
        if not _block_matches(text.lines, hunk.new_lines, hunk.new_position, 0, at_start, at_end):
            return False
        # an empty new side matches anywhere; require the removed lines to be gone
        if not hunk.new_lines and _block_matches(
            text.lines, hunk.old_lines, hunk.new_position, 0, at_start, at_end
        ):
            return False
        if (hunk.old_no_newline or hunk.new_no_newline) and text.ends_with_newline == hunk.new_no_newline:
            return False
    return True


def _locate(
    lines: list[str],
    hunk: Hunk,
    expected: int,
    min_pos: int,
    fuzz_factor: int,
    at_start: bool,
    at_end: bool,
) -> int | None:
    block = hunk.old_lines
    max_pos = len(lines) - len(block)
    if max_pos < min_pos:
        return None
    expected = min(max(expected, min_pos), max_pos)

    # exact matches win over fuzzy ones at any distance
    tolerances = [0] if fuzz_factor == 0 else [0, fuzz_factor]
    for tolerance in tolerances:
        for distance in range(0, max(expected - min_pos, max_pos - expected) + 1):
            for pos in (expected - distance, expected + distance) if distance else (expected,):
                if min_pos <= pos <= max_pos and _block_matches(
                    lines, block, pos, tolerance, at_start, at_end
                ):
                    return pos
    return None


def apply_patch(patch_text: str, base_text: str, fuzz_factor: int = 0) -> PatchResult:
    """
    Apply a single-file unified diff to ``base_text``.

    Returns a failed PatchResult, never an exception, when the patch is
    malformed or a hunk cannot be located within ``fuzz_factor``.
    """
    try:
        patch_set = parse_patch(patch_text)
    except PatchParseError as e:
        logger.warning(f"Patch could not be parsed: {e}")
        return PatchResult.failure(f"Malformed patch: {e}")

    if len(patch_set.files) > 1:
        return PatchResult.failure(
            f"Patch touches {len(patch_set.files)} files; apply_patch handles one file at a time"
        )

    text = _Text.from_string(base_text)
    hunks = patch_set.hunks
    if not hunks:
        return PatchResult.success(text.to_string())

    if _is_already_applied(text, hunks):
        logger.info("Patch is already applied; leaving content unchanged")
        return PatchResult.success(text.to_string(), already_applied=True)

    lines = list(text.lines)
    ends_with_newline = text.ends_with_newline
    delta = 0
    drift = 0
    min_pos = 0
    for index, hunk in enumerate(hunks):
        at_start, at_end = _anchors(hunks, index)
        expected = hunk.old_position + delta + drift
        pos = _locate(lines, hunk, expected, min_pos, fuzz_factor, at_start, at_end)
        if pos is None or (hunk.old_no_newline and ends_with_newline and hunk.old_lines):
            message = f"Hunk #{index + 1} {hunk.header} does not apply"
            logger.warning(f"Patch could not be applied cleanly: {message}")
            return PatchResult.failure(message, failed_hunk=index)

        drift = pos - (hunk.old_position + delta)
        replacement: list[str] = []
        cursor = pos
        for ln in hunk.lines:
            if ln.op == " ":
                # keep the target's own line; it may differ under fuzz
                replacement.append(lines[cursor])
                cursor += 1
            elif ln.op == "-":
                cursor += 1
            else:
                replacement.append(ln.text)
        lines[pos:cursor] = replacement
        delta += len(replacement) - (cursor - pos)
        min_pos = pos + len(replacement)

        if hunk.new_no_newline:
            ends_with_newline = False
        elif hunk.old_no_newline:
            ends_with_newline = True

    logger.debug(f"Applied {len(hunks)} hunk(s)")
    return PatchResult.success(_Text(lines=lines, ends_with_newline=ends_with_newline).to_string())


def apply_sequential(
    patches: list[str],
    base_text: str,
    fuzz_factor: int = 0,
) -> PatchResult:
    """
    Apply patches in order, each to the output of the previous one.

    On the first failure all intermediate output is discarded and only the
    failing index is reported.
    """
    current = base_text
    for index, patch_text in enumerate(patches):
        result = apply_patch(patch_text, current, fuzz_factor=fuzz_factor)
        if not result.ok:
            logger.error(f"Failed to apply patch {index + 1} of {len(patches)}: {result.error}")
            return PatchResult(
                ok=False,
                error=f"Patch {index + 1} failed: {result.error}",
                failed_hunk=result.failed_hunk,
                failed_index=index,
            )
        current = result.text or ""

    logger.info(f"Successfully applied {len(patches)} patches")
    return PatchResult.success(normalize_newlines(current))
