import logging
from dataclasses import dataclass

from fastapi import UploadFile
from fastapi.concurrency import run_in_threadpool

from .exceptions import NoFilesError, ShareError, StorageError, TooManyFilesError
from .naming import StoredName, TokenGenerator, dedupe_names, sanitize_filename
from .qr import render_qr_data_uri
from .retention import RetentionStore
from .storage import BlobDirectory

logger = logging.getLogger(__name__)


@dataclass
class UploadResult:
    stored_names: list[StoredName]
    download_link: str
    qr_code: str
    group_id: str | None = None

    @property
    def original_names(self) -> list[str]:
        return [n.original_name for n in self.stored_names]


def file_link(base_url: str, stored_name: StoredName | str) -> str:
    return f"{base_url}/download-file/{stored_name}"


def group_link(base_url: str, group_id: str) -> str:
    return f"{base_url}/download-group/{group_id}"


class UploadCoordinator:
    def __init__(
        self,
        blobs: BlobDirectory,
        store: RetentionStore,
        base_url: str,
        max_file_size: int,
        max_file_count: int,
        tokens: TokenGenerator | None = None,
        qr_renderer=render_qr_data_uri,
    ):
        self.blobs = blobs
        self.store = store
        self.base_url = base_url
        self.max_file_size = max_file_size
        self.max_file_count = max_file_count
        self.tokens = tokens or TokenGenerator()
        self.qr_renderer = qr_renderer

    def _plan(self, files: list[UploadFile]) -> list[StoredName]:
        if not files:
            raise NoFilesError()
        if len(files) > self.max_file_count:
            raise TooManyFilesError(self.max_file_count)

        names = dedupe_names([sanitize_filename(f.filename) for f in files])
        token = self.tokens.next_token()
        return [StoredName(token=token, original_name=name) for name in names]

    async def upload(self, files: list[UploadFile]) -> UploadResult:
        """Store a batch and return its share link.

        One file is linked directly; several files become a group keyed by
        the batch token, recorded only after every blob has been written.
        """
        planned = self._plan(files)
        written: list[StoredName] = []
        try:
            for upload_file, stored_name in zip(files, planned):
                await self.blobs.save_upload_file(upload_file, stored_name, self.max_file_size)
                written.append(stored_name)

            if len(planned) > 1:
                group_id = planned[0].token
                await run_in_threadpool(self.store.put_group, group_id, planned)
                link = group_link(self.base_url, group_id)
                logger.info("[UPLOAD] New Group (%s) of %d files uploaded.", group_id, len(planned))
            else:
                group_id = None
                link = file_link(self.base_url, planned[0])
                logger.info("[UPLOAD] Single file uploaded: %s", planned[0])
        except ShareError:
            self._rollback(written)
            raise
        except (OSError, ValueError) as e:
            logger.exception("Failed to store upload batch")
            self._rollback(written)
            raise StorageError() from e

        return UploadResult(
            stored_names=planned,
            download_link=link,
            qr_code=await run_in_threadpool(self.qr_renderer, link),
            group_id=group_id,
        )

    def _rollback(self, written: list[StoredName]) -> None:
        for stored_name in written:
            logger.warning("Rolling back upload, deleting blob: %s", stored_name)
            self.blobs.discard(stored_name)
