"""
Filesystem index service.

The core only talks to ``IndexService``: build a database file from a scan
root, search it with positional include/exclude terms, and count its entries.
``LocateIndexService`` is a plain locate-style implementation: one relative
path per line, scanned case-insensitively.
"""

import os
import tempfile
from pathlib import Path
from typing import List, Protocol, Sequence

from loguru import logger


class IndexService(Protocol):
    """Blocking filesystem index calls; callers dispatch them off the loop."""

    def build(self, database_path: Path, scan_root: Path, temp_dir: Path) -> None:
        ...

    def search(self, database_path: Path, terms: Sequence[str], include_flags: Sequence[bool]) -> List[str]:
        ...

    def stat_indexed_count(self, database_path: Path) -> int:
        ...


class LocateIndexService:
    """Newline separated path list built by walking the scan root."""

    def build(self, database_path: Path, scan_root: Path, temp_dir: Path) -> None:
        scan_root = Path(scan_root)
        if not scan_root.is_dir():
            raise FileNotFoundError(f"Scan root not found: {scan_root}")
        if not os.access(scan_root, os.R_OK | os.X_OK):
            raise PermissionError(f"Permission denied: {scan_root}")

        temp_dir.mkdir(parents=True, exist_ok=True)
        database_path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(prefix="index-", suffix=".tmp", dir=temp_dir)
        count = 0
        try:
            with os.fdopen(fd, "w", encoding="utf-8", errors="surrogateescape") as f:
                for dirpath, dirnames, filenames in os.walk(scan_root, onerror=self._log_walk_error):
                    dirnames.sort()
                    for name in sorted(filenames):
                        relative = os.path.relpath(os.path.join(dirpath, name), scan_root)
                        if "\n" in relative:
                            continue
                        f.write(relative + "\n")
                        count += 1
            os.replace(tmp_name, database_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.debug(f"Wrote {count} paths to {database_path}")

    def search(self, database_path: Path, terms: Sequence[str], include_flags: Sequence[bool]) -> List[str]:
        if not terms:
            return []

        queries = [(term.casefold(), include) for term, include in zip(terms, include_flags)]
        matches = []
        with open(database_path, "r", encoding="utf-8", errors="surrogateescape") as f:
            for line in f:
                path = line.rstrip("\n")
                folded = path.casefold()
                if all((term in folded) == include for term, include in queries):
                    matches.append(path)
        return matches

    def stat_indexed_count(self, database_path: Path) -> int:
        with open(database_path, "rb") as f:
            return sum(1 for _ in f)

    @staticmethod
    def _log_walk_error(error: OSError) -> None:
        logger.debug(f"Skipping unreadable path: {error}")
