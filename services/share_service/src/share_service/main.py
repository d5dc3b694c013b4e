import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse

from .archive import archive_filename, resolve_group, stream_group_archive
from .config import Settings, settings as default_settings
from .exceptions import BlobNotFoundError, ShareError
from .logging_config import configure_logging
from .naming import StoredName
from .retention import RetentionStore
from .schemas import GroupFile, GroupInfo, UploadResponse
from .storage import BlobDirectory
from .sweeper import ExpirySweeper
from .uploads import UploadCoordinator, group_link

logger = logging.getLogger(__name__)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_blobs(request: Request) -> BlobDirectory:
    return request.app.state.blobs


def get_store(request: Request) -> RetentionStore:
    return request.app.state.store


def get_coordinator(request: Request) -> UploadCoordinator:
    return request.app.state.coordinator


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.log_level)

    blobs = BlobDirectory(settings.uploads_dir)
    store = RetentionStore(settings.groups_file)
    sweeper = ExpirySweeper(
        blobs,
        expiry_hours=settings.file_expiry_hours,
        interval_minutes=settings.cleanup_interval_minutes,
        store=store,
        prune_stale_groups=settings.prune_stale_groups,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        Path(settings.data_dir).mkdir(parents=True, exist_ok=True)
        blobs.ensure()
        store.load()
        if settings.sweeper_enabled:
            sweeper.start()
        logger.info("Server running on %s", settings.public_url)
        try:
            yield
        finally:
            sweeper.shutdown()

    app = FastAPI(title="SwiftShare Relay", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.blobs = blobs
    app.state.store = store
    app.state.sweeper = sweeper
    app.state.coordinator = UploadCoordinator(
        blobs,
        store,
        base_url=settings.public_url,
        max_file_size=settings.max_file_size,
        max_file_count=settings.max_file_count,
    )

    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["GET", "POST"])

    @app.exception_handler(ShareError)
    async def _share_error(request: Request, exc: ShareError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.__cause__ or exc)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "code": exc.code})

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"error": "An unknown server error occurred.", "code": "INTERNAL_ERROR"},
        )

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:
    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.post("/upload", response_model=UploadResponse)
    async def upload(
        files: list[UploadFile] | None = File(None),
        coordinator: UploadCoordinator = Depends(get_coordinator),
    ):
        result = await coordinator.upload(files or [])
        return UploadResponse(
            file_count=len(result.stored_names),
            download_link=result.download_link,
            qr_code=result.qr_code,
            uploaded_files=result.original_names,
        )

    @app.get("/download-file/{stored_name}")
    def download_file(stored_name: str, blobs: BlobDirectory = Depends(get_blobs)):
        try:
            parsed = StoredName.parse(stored_name)
            path = blobs.path_for(parsed)
        except ValueError:
            raise BlobNotFoundError(stored_name)
        if not path.is_file():
            raise BlobNotFoundError(stored_name)
        return FileResponse(
            path=str(path),
            media_type="application/octet-stream",
            filename=parsed.original_name,
        )

    @app.get("/download-group/{group_id}")
    def download_group(
        group_id: str,
        blobs: BlobDirectory = Depends(get_blobs),
        store: RetentionStore = Depends(get_store),
        settings: Settings = Depends(get_settings),
    ):
        entries = resolve_group(store, group_id)
        filename = archive_filename(settings.archive_prefix, group_id)
        return StreamingResponse(
            stream_group_archive(blobs, group_id, entries),
            media_type="application/zip",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.get("/group-info/{group_id}", response_model=GroupInfo)
    def group_info(
        group_id: str,
        store: RetentionStore = Depends(get_store),
        settings: Settings = Depends(get_settings),
    ):
        entries = resolve_group(store, group_id)
        return GroupInfo(
            group_id=group_id,
            files=[GroupFile(name=e.original_name) for e in entries],
            download_link=group_link(settings.public_url, group_id),
        )


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=default_settings.port)
