"""
Source difference model and its unified-diff serialization.

A difference is an ordered list of per-file changes between a snapshot
and a later tree. The text form is git-flavoured unified diff rooted at the
build directory with a/ and b/ prefixes, so it is applied with one level of
path stripping. Serialization is deterministic: no timestamps, changes in
path order.
"""

import base64
import re
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from ..core.errors import DiffComputationError
from ..core.hashing import ZERO_DIGEST

ADDED = "added"
DELETED = "deleted"
MODIFIED = "modified"

DEV_NULL = "/dev/null"
NO_NEWLINE = "\\ No newline at end of file"
LITERAL_WIDTH = 76

_HUNK_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")
_INDEX_RE = re.compile(r"^index ([0-9a-f]{64})\.\.([0-9a-f]{64})$")


def split_lines(data: bytes) -> List[bytes]:
    """
    Split on b"\\n" only, keeping line ends.

    A final line without a newline is kept as is; joining the result
    gives back the input exactly.
    """
    parts = data.split(b"\n")
    lines = [p + b"\n" for p in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


@dataclass(frozen=True)
class Hunk:
    """
    One unified-diff hunk.

    Start values are the ones printed in the @@ header (1-based, or the
    line before the change when the count is zero). Each line is a
    (tag, text) pair with tag in " ", "-", "+"; text keeps its trailing
    newline, and lacks one only for a last line without newline.
    """
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: Tuple[Tuple[str, str], ...]

    def header(self) -> str:
        return f"@@ -{_format_range(self.old_start, self.old_count)} +{_format_range(self.new_start, self.new_count)} @@"


@dataclass(frozen=True)
class FileChange:
    """
    Change of a single path.

    Fields:
        path: POSIX path relative to the build root
        kind: ADDED, DELETED or MODIFIED
        old_mode: Mode before the change (None when absent or unchanged)
        new_mode: Mode after the change (None when absent or unchanged)
        old_digest: SHA-256 of the baseline content (None if not recorded)
        new_digest: SHA-256 of the resulting content (None if not recorded)
        hunks: Text hunks
        binary: Content is binary; hunks are empty
        literal: Full new content of a binary change (None for deletions)
    """
    path: str
    kind: str
    old_mode: Optional[int] = None
    new_mode: Optional[int] = None
    old_digest: Optional[str] = None
    new_digest: Optional[str] = None
    hunks: Tuple[Hunk, ...] = ()
    binary: bool = False
    literal: Optional[bytes] = None

    def to_lines(self) -> List[str]:
        lines = [f"diff --git a/{self.path} b/{self.path}"]

        if self.kind == ADDED:
            lines.append(f"new file mode {self.new_mode:06o}")
        elif self.kind == DELETED:
            lines.append(f"deleted file mode {self.old_mode:06o}")
        elif self.old_mode is not None and self.new_mode is not None and self.old_mode != self.new_mode:
            lines.append(f"old mode {self.old_mode:06o}")
            lines.append(f"new mode {self.new_mode:06o}")

        if self.old_digest is not None and self.new_digest is not None:
            lines.append(f"index {self.old_digest}..{self.new_digest}")

        old_name = DEV_NULL if self.kind == ADDED else f"a/{self.path}"
        new_name = DEV_NULL if self.kind == DELETED else f"b/{self.path}"

        if self.binary:
            lines.append(f"Binary files {old_name} and {new_name} differ")
            if self.literal is not None:
                lines.append(f"literal {len(self.literal)}")
                encoded = base64.b64encode(self.literal).decode("ascii")
                for i in range(0, len(encoded), LITERAL_WIDTH):
                    lines.append(encoded[i : i + LITERAL_WIDTH])
            return lines

        if self.hunks:
            lines.append(f"--- {old_name}")
            lines.append(f"+++ {new_name}")
            for hunk in self.hunks:
                lines.append(hunk.header())
                for tag, text in hunk.lines:
                    if text.endswith("\n"):
                        lines.append(tag + text[:-1])
                    else:
                        lines.append(tag + text)
                        lines.append(NO_NEWLINE)
        return lines


@dataclass(frozen=True)
class SourceDifference:
    """
    Every addition, deletion and modification between a snapshot and a tree.

    Only meaningful against the snapshot it was computed from.
    """
    changes: Tuple[FileChange, ...] = field(default_factory=tuple)

    def __iter__(self) -> Iterator[FileChange]:
        return iter(self.changes)

    def __len__(self) -> int:
        return len(self.changes)

    def is_empty(self) -> bool:
        return not self.changes

    def paths(self) -> List[str]:
        return [c.path for c in self.changes]

    def summary(self) -> Dict[str, int]:
        counts = {ADDED: 0, DELETED: 0, MODIFIED: 0}
        for change in self.changes:
            counts[change.kind] += 1
        return counts

    def to_text(self) -> str:
        """Serialize to unified-diff text (empty string for no changes)."""
        out = []
        for change in self.changes:
            out.extend(change.to_lines())
        return "".join(line + "\n" for line in out)

    def to_bytes(self) -> bytes:
        return self.to_text().encode("utf-8")

    @classmethod
    def from_text(cls, text: str, strip: int = 1) -> "SourceDifference":
        """
        Parse unified-diff text produced by to_text().

        Args:
            text: Serialized difference
            strip: Leading path components removed from each path

        Raises:
            DiffComputationError: If the text is malformed
        """
        return _Parser(text, strip).parse()

    @classmethod
    def from_bytes(cls, data: bytes, strip: int = 1) -> "SourceDifference":
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DiffComputationError(f"Source difference is not valid UTF-8: {e}") from e
        return cls.from_text(text, strip=strip)


def _format_range(start: int, count: int) -> str:
    if count == 1:
        return f"{start}"
    return f"{start},{count}"


def strip_path(raw: str, strip: int) -> str:
    """
    Remove leading components from a diff path (patch -pN).

    Raises:
        DiffComputationError: If too few components remain or the result
            would leave the build root
    """
    parts = raw.split("/")
    if len(parts) <= strip:
        raise DiffComputationError(f"Cannot strip {strip} components from {raw!r}")
    parts = parts[strip:]
    if not parts[0] or any(p in ("", ".", "..") for p in parts):
        raise DiffComputationError(f"Unsafe path in source difference: {raw!r}")
    return "/".join(parts)


class _Parser:
    def __init__(self, text: str, strip: int):
        self.lines = text.split("\n")
        if self.lines and self.lines[-1] == "":
            self.lines.pop()
        self.pos = 0
        self.strip = strip

    def error(self, msg: str) -> DiffComputationError:
        return DiffComputationError(f"Malformed source difference at line {self.pos + 1}: {msg}")

    def peek(self) -> Optional[str]:
        if self.pos < len(self.lines):
            return self.lines[self.pos]
        return None

    def parse(self) -> SourceDifference:
        changes = []
        while self.peek() is not None:
            line = self.peek()
            if not line.startswith("diff --git "):
                raise self.error(f"expected 'diff --git', got {line!r}")
            changes.append(self.parse_change())
        return SourceDifference(changes=tuple(changes))

    def parse_git_header(self, line: str) -> str:
        rest = line[len("diff --git ") :]
        n = (len(rest) - 1) // 2
        if len(rest) % 2 == 0 or rest[n] != " ":
            raise self.error(f"cannot split paths in {line!r}")
        old_path = strip_path(rest[:n], self.strip)
        new_path = strip_path(rest[n + 1 :], self.strip)
        if old_path != new_path:
            raise self.error(f"renames are not supported: {old_path} -> {new_path}")
        return old_path

    def parse_change(self) -> FileChange:
        path = self.parse_git_header(self.lines[self.pos])
        self.pos += 1

        kind = MODIFIED
        old_mode = new_mode = None
        old_digest = new_digest = None
        hunks: List[Hunk] = []
        binary = False
        literal = None

        while True:
            line = self.peek()
            if line is None or line.startswith("diff --git "):
                break
            if line.startswith("new file mode "):
                kind = ADDED
                new_mode = self.parse_mode(line[len("new file mode ") :])
            elif line.startswith("deleted file mode "):
                kind = DELETED
                old_mode = self.parse_mode(line[len("deleted file mode ") :])
            elif line.startswith("old mode "):
                old_mode = self.parse_mode(line[len("old mode ") :])
            elif line.startswith("new mode "):
                new_mode = self.parse_mode(line[len("new mode ") :])
            elif line.startswith("index "):
                m = _INDEX_RE.match(line)
                if not m:
                    raise self.error(f"bad index line {line!r}")
                old_digest, new_digest = m.group(1), m.group(2)
            elif line.startswith("--- ") or line.startswith("+++ "):
                name = line[4:]
                if name != DEV_NULL and strip_path(name, self.strip) != path:
                    raise self.error(f"path {name!r} does not match {path!r}")
            elif line.startswith("Binary files "):
                binary = True
                self.pos += 1
                literal = self.parse_literal()
                continue
            elif line.startswith("@@ "):
                hunks.append(self.parse_hunk())
                continue
            else:
                raise self.error(f"unexpected line {line!r}")
            self.pos += 1

        if kind == ADDED and old_digest is not None and old_digest != ZERO_DIGEST:
            raise self.error(f"added file {path} has a baseline digest")
        if kind == DELETED and new_digest is not None and new_digest != ZERO_DIGEST:
            raise self.error(f"deleted file {path} has a result digest")

        return FileChange(
            path=path,
            kind=kind,
            old_mode=old_mode,
            new_mode=new_mode,
            old_digest=old_digest,
            new_digest=new_digest,
            hunks=tuple(hunks),
            binary=binary,
            literal=literal,
        )

    def parse_mode(self, value: str) -> int:
        try:
            return int(value, 8)
        except ValueError:
            raise self.error(f"bad file mode {value!r}") from None

    def parse_literal(self) -> Optional[bytes]:
        line = self.peek()
        if line is None or not line.startswith("literal "):
            return None
        try:
            size = int(line[len("literal ") :])
        except ValueError:
            raise self.error(f"bad literal size in {line!r}") from None
        self.pos += 1

        chunks = []
        while self.peek() is not None and not self.peek().startswith("diff --git "):
            chunks.append(self.peek())
            self.pos += 1
        try:
            data = base64.b64decode("".join(chunks), validate=True)
        except ValueError as e:
            raise self.error(f"bad literal data: {e}") from e
        if len(data) != size:
            raise self.error(f"literal is {len(data)} bytes, header says {size}")
        return data

    def parse_hunk(self) -> Hunk:
        m = _HUNK_RE.match(self.peek())
        if not m:
            raise self.error(f"bad hunk header {self.peek()!r}")
        old_start = int(m.group(1))
        old_count = int(m.group(2)) if m.group(2) is not None else 1
        new_start = int(m.group(3))
        new_count = int(m.group(4)) if m.group(4) is not None else 1
        self.pos += 1

        lines: List[Tuple[str, str]] = []
        old_left, new_left = old_count, new_count
        while old_left > 0 or new_left > 0:
            line = self.peek()
            if line is None:
                raise self.error("hunk ends early")
            tag, text = line[:1], line[1:]
            if tag == " ":
                old_left -= 1
                new_left -= 1
            elif tag == "-":
                old_left -= 1
            elif tag == "+":
                new_left -= 1
            else:
                raise self.error(f"bad hunk line {line!r}")
            if old_left < 0 or new_left < 0:
                raise self.error("hunk longer than its header")
            self.pos += 1

            if self.peek() == NO_NEWLINE:
                self.pos += 1
                lines.append((tag, text))
            else:
                lines.append((tag, text + "\n"))

        return Hunk(
            old_start=old_start,
            old_count=old_count,
            new_start=new_start,
            new_count=new_count,
            lines=tuple(lines),
        )
