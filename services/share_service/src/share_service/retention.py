"""Group membership, kept in memory and written through to a JSON document."""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path

from pydantic import ValidationError

from .exceptions import StorageError
from .naming import StoredName
from .schemas import GroupDocument

logger = logging.getLogger(__name__)


class RetentionStore:
    """Maps ``group_id -> [stored name, ...]`` in upload order.

    Every mutation rewrites the whole document under one lock: the new map is
    written to a temporary file next to the target and renamed over it, and
    only then swapped in memory. Readers see either the old or the new map.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._groups: dict[str, list[str]] = {}

    def load(self) -> None:
        groups: dict[str, list[str]] = {}
        try:
            raw = self.path.read_text(encoding="utf-8")
            groups = GroupDocument.model_validate(json.loads(raw or "{}")).root
        except FileNotFoundError:
            pass
        except (OSError, ValueError, ValidationError):
            logger.exception("Error loading file group map from %s, starting empty", self.path)
        with self._lock:
            self._groups = groups
        logger.info("Loaded %d file group(s)", len(groups))

    def get_group(self, group_id: str) -> list[StoredName] | None:
        names = self._groups.get(group_id)
        if names is None:
            return None
        entries = []
        for name in names:
            try:
                entries.append(StoredName.parse(name))
            except ValueError:
                logger.warning("Skipping malformed entry %r in group %s", name, group_id)
        return entries

    def group_ids(self) -> list[str]:
        return list(self._groups)

    def put_group(self, group_id: str, stored_names: list[StoredName]) -> None:
        with self._lock:
            groups = dict(self._groups)
            groups[group_id] = [str(n) for n in stored_names]
            self._write(groups)
            self._groups = groups

    def remove_groups(self, group_ids) -> int:
        doomed = set(group_ids)
        with self._lock:
            groups = {k: v for k, v in self._groups.items() if k not in doomed}
            removed = len(self._groups) - len(groups)
            if removed:
                self._write(groups)
                self._groups = groups
        return removed

    def _write(self, groups: dict[str, list[str]]) -> None:
        payload = GroupDocument(groups).model_dump_json(indent=2)
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as out:
                out.write(payload)
                out.flush()
                os.fsync(out.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            logger.exception("Error saving file group map to %s", self.path)
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise StorageError() from e
