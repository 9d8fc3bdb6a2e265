"""Persisted build records, one per source identity."""

import json
import os
import tempfile
import threading
from pathlib import Path

from common.constants import RECORD_STORE_FILENAME, RECORD_STORE_VERSION
from common.logger import get_logger

from .models import BuildRecord

logger = get_logger(__name__)


class BuildRecordStore:
    """JSON-backed store of the last successful build of every source.

    The store is loaded once at the start of a run and written after each
    successful build. Writes go through a temporary file and an atomic rename,
    so an interrupted run leaves either the old or the new file behind.

    File layout:
        {"version": 1, "records": {"<repo_url>": {...BuildRecord...}}}
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._records: dict[str, BuildRecord] = {}
        self._lock = threading.Lock()

    @classmethod
    def in_directory(cls, directory: Path) -> "BuildRecordStore":
        return cls(Path(directory) / RECORD_STORE_FILENAME)

    def load(self) -> "BuildRecordStore":
        """
        Read records from disk.

        A missing, unreadable or malformed file yields an empty store: records
        only let a run skip work, so losing them costs a rebuild, nothing more.

        Returns:
            self, for chaining
        """
        with self._lock:
            self._records = self._read()
        logger.debug(f"Loaded {len(self._records)} build record(s) from {self.path}")
        return self

    def _read(self) -> dict[str, BuildRecord]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable build record store {self.path}: {e}")
            return {}

        if not isinstance(data, dict) or data.get("version") != RECORD_STORE_VERSION:
            logger.warning(f"Ignoring build record store {self.path} with unknown format")
            return {}

        records: dict[str, BuildRecord] = {}
        for source_id, raw in data.get("records", {}).items():
            try:
                records[source_id] = BuildRecord.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Dropping malformed build record for {source_id}: {e}")
        return records

    def get(self, source_id: str) -> BuildRecord | None:
        with self._lock:
            return self._records.get(source_id)

    def save(self, record: BuildRecord) -> None:
        """
        Store a record and persist the whole store.

        Raises:
            OSError: If the store file cannot be written
        """
        with self._lock:
            self._records[record.source_id] = record
            self._write()

    def _write(self) -> None:
        data = {
            "version": RECORD_STORE_VERSION,
            "records": {
                source_id: record.to_dict()
                for source_id, record in sorted(self._records.items())
            },
        }

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
                f.write("\n")
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, source_id: str) -> bool:
        with self._lock:
            return source_id in self._records
