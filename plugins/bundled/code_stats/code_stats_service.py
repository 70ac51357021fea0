"""Line counting and phase snapshots for the code-stats plugin."""

import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List

logger = logging.getLogger(__name__)

SKIP_DIRS = {"node_modules", ".git", "dist", "build", "coverage", "__pycache__", ".venv", "venv"}

# Line comment prefixes; block comments are only tracked for C-style sources
LINE_COMMENT_PREFIXES = ("//", "#")


@dataclass
class FileStats:
    path: str
    lines: int
    blank_lines: int
    comment_lines: int
    code_lines: int


@dataclass
class ExtensionStats:
    files: int = 0
    lines: int = 0
    code_lines: int = 0


@dataclass
class CodeStats:
    total_files: int = 0
    total_lines: int = 0
    total_code_lines: int = 0
    total_comment_lines: int = 0
    total_blank_lines: int = 0
    by_extension: Dict[str, ExtensionStats] = field(default_factory=dict)
    files: List[FileStats] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StatsSnapshot:
    phase: str
    feature: str
    stats: CodeStats
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class StatsDiff:
    files_added: int
    files_removed: int
    lines_added: int
    lines_removed: int
    code_lines_added: int
    code_lines_removed: int


def is_test_file(path: Path) -> bool:
    name = path.name
    if ".test." in name or ".spec." in name or "_test." in name or name.startswith("test_"):
        return True
    return "tests" in path.parts or "__tests__" in path.parts


def analyze_source(path: str, content: str) -> FileStats:
    """Count blank, comment and code lines in one file's content."""
    lines = content.split("\n")
    blank = 0
    comments = 0
    in_block = False

    for line in lines:
        stripped = line.strip()
        if not stripped:
            blank += 1
            continue
        if in_block:
            comments += 1
            if "*/" in stripped:
                in_block = False
            continue
        if stripped.startswith("/*"):
            comments += 1
            if "*/" not in stripped:
                in_block = True
            continue
        if stripped.startswith(LINE_COMMENT_PREFIXES):
            comments += 1

    return FileStats(
        path=path,
        lines=len(lines),
        blank_lines=blank,
        comment_lines=comments,
        code_lines=len(lines) - blank - comments,
    )


class CodeStatsService:
    """Walks a directory tree and keeps per-feature snapshots between phases."""

    def __init__(self, extensions: Iterable[str], include_tests: bool = True):
        self.extensions = tuple(extensions)
        self.include_tests = include_tests
        self._snapshots: Dict[str, List[StatsSnapshot]] = {}

    def analyze(self, directory) -> CodeStats:
        stats = CodeStats()
        for path in self._walk(Path(directory)):
            if path.suffix not in self.extensions:
                continue
            if not self.include_tests and is_test_file(path):
                continue
            try:
                content = path.read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                logger.debug(f"Skipping unreadable file {path}: {e}")
                continue

            file_stats = analyze_source(str(path), content)
            stats.files.append(file_stats)
            ext = stats.by_extension.setdefault(path.suffix, ExtensionStats())
            ext.files += 1
            ext.lines += file_stats.lines
            ext.code_lines += file_stats.code_lines

        stats.total_files = len(stats.files)
        stats.total_lines = sum(f.lines for f in stats.files)
        stats.total_code_lines = sum(f.code_lines for f in stats.files)
        stats.total_comment_lines = sum(f.comment_lines for f in stats.files)
        stats.total_blank_lines = sum(f.blank_lines for f in stats.files)
        return stats

    def _walk(self, root: Path) -> Iterable[Path]:
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS and not d.startswith("."))
            for filename in sorted(filenames):
                yield Path(dirpath) / filename

    def save_snapshot(self, feature: str, phase: str, stats: CodeStats) -> StatsSnapshot:
        snapshot = StatsSnapshot(phase=phase, feature=feature, stats=stats)
        self._snapshots.setdefault(feature, []).append(snapshot)
        return snapshot

    def get_snapshots(self, feature: str) -> List[StatsSnapshot]:
        return list(self._snapshots.get(feature, []))

    @staticmethod
    def compare(before: StatsSnapshot, after: StatsSnapshot) -> StatsDiff:
        b, a = before.stats, after.stats
        return StatsDiff(
            files_added=max(0, a.total_files - b.total_files),
            files_removed=max(0, b.total_files - a.total_files),
            lines_added=max(0, a.total_lines - b.total_lines),
            lines_removed=max(0, b.total_lines - a.total_lines),
            code_lines_added=max(0, a.total_code_lines - b.total_code_lines),
            code_lines_removed=max(0, b.total_code_lines - a.total_code_lines),
        )

    def clear(self) -> None:
        self._snapshots.clear()
