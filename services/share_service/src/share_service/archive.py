"""On-the-fly ZIP streaming for file groups.

``zipfile`` writes to a sink that cannot seek, so every entry uses a data
descriptor and nothing beyond the current chunk is held in memory.
"""

import io
import logging
import zipfile

from .exceptions import GroupNotFoundError
from .naming import StoredName
from .retention import RetentionStore
from .storage import CHUNK_SIZE, BlobDirectory

logger = logging.getLogger(__name__)


class _ChunkSink(io.RawIOBase):
    """Write-only, non-seekable buffer drained after each write burst."""

    def __init__(self):
        super().__init__()
        self._chunks: list[bytes] = []

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        self._chunks.append(bytes(data))
        return len(data)

    def drain(self) -> bytes:
        data = b"".join(self._chunks)
        self._chunks.clear()
        return data


def resolve_group(store: RetentionStore, group_id: str) -> list[StoredName]:
    entries = store.get_group(group_id)
    if not entries:
        raise GroupNotFoundError(group_id)
    return entries


def archive_filename(prefix: str, group_id: str) -> str:
    return f"{prefix}_Files_{group_id}.zip"


def stream_group_archive(blobs: BlobDirectory, group_id: str, entries: list[StoredName]):
    """Yield ZIP bytes for ``entries``, named by their original names.

    Blobs that have disappeared, and entries that are not plain blob names,
    are skipped with a warning.
    """
    sink = _ChunkSink()
    written = 0
    try:
        with zipfile.ZipFile(sink, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
            for entry in entries:
                try:
                    source = blobs.path_for(entry).open("rb")
                except FileNotFoundError:
                    logger.warning("File not found on server: %s (group %s)", entry, group_id)
                    continue
                except ValueError:
                    logger.warning("Skipping unsafe entry %r in group %s", str(entry), group_id)
                    continue
                with source, zf.open(entry.original_name, "w") as dest:
                    while True:
                        chunk = source.read(CHUNK_SIZE)
                        if not chunk:
                            break
                        dest.write(chunk)
                        data = sink.drain()
                        if data:
                            yield data
                written += 1
                data = sink.drain()
                if data:
                    yield data
        data = sink.drain()
        if data:
            yield data
    except Exception:
        logger.exception("Archive error while streaming group %s", group_id)
        raise
    logger.info("Streamed group %s: %d of %d file(s)", group_id, written, len(entries))
