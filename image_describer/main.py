import logging
from pathlib import Path
from typing import List

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import PlainTextResponse

from .archive import is_archive
from .batch import BatchProcessor
from .config import Settings, get_settings
from .db import get_image as get_catalog_image, init_db, list_images as list_catalog_images
from .normalizer import PersistenceLauncher, persist_results
from .processing import ensure_dirs, is_image_name, originals_dir, staging_dir, uploads_dir
from .schemas import ArchiveResponse, CatalogImage
from .storage import BlobStore, GridFSBlobStore, LocalBlobStore
from .vision import VisionClient, create_http_client

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("image-describer-api")

app = FastAPI(title="Image Describer API")

ERROR_TEXT = "Error processing file"


def build_store(settings: Settings) -> BlobStore:
    if settings.blob_backend == "local":
        return LocalBlobStore(originals_dir(settings.data_dir))
    return GridFSBlobStore(settings.db_connection_string, settings.db_name)


@app.on_event("startup")
async def startup() -> None:
    settings = get_settings()
    settings.validate()

    ensure_dirs(settings.data_dir)
    init_db(settings.db_path)

    store = build_store(settings)
    await store.connect()
    logger.info("Database connected and blob store initialized")

    http_client = create_http_client(settings.vision_timeout_seconds, settings.vision_max_connections)
    vision = VisionClient(
        http_client,
        url=settings.vision_api_url,
        model_version=settings.vision_model_version,
        vision_params=settings.vision_params,
        prompt_length=settings.vision_prompt_length,
    )

    app.state.store = store
    app.state.http_client = http_client
    app.state.processor = BatchProcessor(
        vision,
        store,
        api_key=settings.vision_api_key,
        uploads_dir=uploads_dir(settings.data_dir),
        wave_size=settings.batch_wave_size,
    )
    app.state.launcher = PersistenceLauncher(settings.persist_command)
    app.state.staging_dir = staging_dir(settings.data_dir)
    app.state.db_path = settings.db_path


@app.on_event("shutdown")
async def shutdown() -> None:
    launcher = getattr(app.state, "launcher", None)
    if launcher is not None:
        await launcher.drain()
    http_client = getattr(app.state, "http_client", None)
    if http_client is not None:
        await http_client.aclose()
    store = getattr(app.state, "store", None)
    if store is not None:
        await store.close()


def get_processor(request: Request) -> BatchProcessor:
    return request.app.state.processor


def get_launcher(request: Request) -> PersistenceLauncher:
    return request.app.state.launcher


def get_staging_dir(request: Request) -> Path:
    return request.app.state.staging_dir


def get_db_path(request: Request) -> Path:
    return request.app.state.db_path


@app.get("/")
def root():
    return {"message": "API is working"}


@app.post("/upload")
async def upload(
    file: UploadFile = File(...),
    processor: BatchProcessor = Depends(get_processor),
    launcher: PersistenceLauncher = Depends(get_launcher),
    staging: Path = Depends(get_staging_dir),
):
    """
    Describe a single image, or every image inside a zip archive.

    Archive images that fail are left out of the response without notice;
    a failing single image is a 500.
    """
    filename = file.filename or ""
    logger.info("File upload received: %s", filename)

    try:
        archive = is_archive(file.content_type, filename)
        if not archive and not is_image_name(filename):
            raise HTTPException(
                status_code=400,
                detail="Only JPG, PNG and GIF images or ZIP archives are allowed.",
            )

        contents = await file.read()
        if not contents:
            raise HTTPException(status_code=400, detail="Empty upload.")

        if archive:
            logger.info("Processing zip archive %s", filename)
            batch = await processor.process_archive(contents)
            if batch.results:
                await persist_results(batch.results, staging, launcher)
            if batch.skipped:
                logger.warning("Skipped %d of %d images: %s", len(batch.skipped), batch.submitted, batch.skipped)
            return ArchiveResponse(images=[r.to_response() for r in batch.results])

        result = await processor.process_upload(filename, contents)
        if result is None:
            return PlainTextResponse(ERROR_TEXT, status_code=500)

        await persist_results([result], staging, launcher)
        return {**result.description, "imageFileId": result.blob_ref}

    except HTTPException:
        raise
    except Exception:
        logger.exception("Error during image processing: %s", filename)
        return PlainTextResponse(ERROR_TEXT, status_code=500)
    finally:
        await file.close()


@app.get("/api/images", response_model=List[CatalogImage])
def list_images(db_path: Path = Depends(get_db_path)):
    return [CatalogImage(**row) for row in list_catalog_images(db_path)]


@app.get("/api/images/{image_id}", response_model=CatalogImage)
def get_image(image_id: str, db_path: Path = Depends(get_db_path)):
    row = get_catalog_image(image_id, db_path)
    if not row:
        raise HTTPException(status_code=404, detail="Image not found.")
    return CatalogImage(**row)
