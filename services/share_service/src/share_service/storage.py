import logging
import os
from dataclasses import dataclass
from pathlib import Path

from fastapi import UploadFile

from .exceptions import FileTooLargeError
from .naming import StoredName

CHUNK_SIZE = 1024 * 1024  # 1MB

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlobStat:
    name: str
    path: Path
    mtime: float
    size: int


class BlobDirectory:
    """Flat directory of uploaded blobs, keyed by stored name."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def ensure(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, stored_name: StoredName | str) -> Path:
        """Path of a blob; ``ValueError`` if the name escapes the directory."""
        name = str(stored_name)
        if not name or name in (".", "..") or "/" in name or "\\" in name or "\x00" in name:
            raise ValueError(f"unsafe blob name: {name!r}")
        return self.root / name

    def exists(self, stored_name: StoredName | str) -> bool:
        try:
            return self.path_for(stored_name).is_file()
        except ValueError:
            return False

    async def save_upload_file(
        self, upload_file: UploadFile, stored_name: StoredName, max_size: int
    ) -> int:
        """Stream an upload into a new blob, enforcing ``max_size``.

        The blob is created exclusively; an existing blob with the same name
        raises ``FileExistsError``. On any failure the partial blob is removed.
        """
        try:
            destination = self.path_for(stored_name)
        except ValueError:
            await upload_file.close()
            raise
        size = 0
        try:
            with destination.open("xb") as out:
                while True:
                    chunk = await upload_file.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > max_size:
                        raise FileTooLargeError(max_size)
                    out.write(chunk)
        except FileExistsError:
            raise
        except BaseException:
            self.discard(stored_name)
            raise
        finally:
            await upload_file.close()
        return size

    def discard(self, stored_name: StoredName | str) -> None:
        """Best-effort removal used to roll back a failed upload."""
        try:
            self.path_for(stored_name).unlink(missing_ok=True)
        except OSError:
            logger.exception("Failed to roll back blob, orphaned file: %s", stored_name)

    def iter_blobs(self):
        """Yield a ``BlobStat`` per regular file; unreadable entries are logged and skipped."""
        try:
            entries = list(os.scandir(self.root))
        except FileNotFoundError:
            return
        for entry in entries:
            try:
                if not entry.is_file(follow_symlinks=False):
                    continue
                st = entry.stat(follow_symlinks=False)
            except FileNotFoundError:
                continue
            except OSError:
                logger.exception("Failed to stat blob: %s", entry.name)
                continue
            yield BlobStat(name=entry.name, path=Path(entry.path), mtime=st.st_mtime, size=st.st_size)

    def delete(self, stored_name: StoredName | str) -> bool:
        """Delete a blob; returns ``False`` if it was already gone."""
        try:
            self.path_for(stored_name).unlink()
        except FileNotFoundError:
            return False
        return True
