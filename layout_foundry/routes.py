"""
Artifact lifecycle API routes.

Uploads, splits and crops, signed downloads, and module versions.
Domain errors raised by the services are mapped to HTTP responses by the
handlers registered in ``api.py``.
"""

from functools import lru_cache
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .db.base import get_db
from .db.services import AssetService, SplitService, UploadService
from .errors import StorageUnavailableError
from .imaging.crops import ImageCropService
from .ingest import IngestionService
from .schemas.artifacts import (
    AssetKind,
    CropRequest,
    SignRequest,
    SplitCreate,
    SplitMetricsUpdate,
    SplitStatusUpdate,
)
from .schemas.versions import (
    RollbackRequest,
    VersionCreateRequest,
    VersionStatusUpdate,
)
from .storage.blobs import BlobStore, create_blob_store
from .storage.signing import SignedAccessService, content_type_for_key
from .versions.store import ModuleVersionStore

logger = structlog.get_logger()

router = APIRouter()

DOWNLOAD_PATH = "/files/download"


# =============================================================================
# Dependencies
# =============================================================================


@lru_cache()
def _blob_store_for(uri: str) -> BlobStore:
    return create_blob_store(uri)


def get_blob_store(settings: Settings = Depends(get_settings)) -> BlobStore:
    return _blob_store_for(settings.blob_storage_uri)


def get_signer(settings: Settings = Depends(get_settings)) -> SignedAccessService:
    return SignedAccessService.from_settings(settings)


def _free_blobs(blob_store: BlobStore, keys: List[str]) -> int:
    freed = 0
    for key in keys:
        try:
            if blob_store.delete(key):
                freed += 1
        except StorageUnavailableError as e:
            logger.warning("blob_delete_failed", key=key, error=e.message)
    return freed


# =============================================================================
# Upload Endpoints
# =============================================================================


@router.post("/uploads", status_code=201, tags=["uploads"])
async def create_upload(
    file: UploadFile = File(...),
    user_id: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
) -> Dict[str, Any]:
    """Ingest a design image."""
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    result = IngestionService(db, blob_store).ingest(
        filename=file.filename or "upload",
        mime=file.content_type or "application/octet-stream",
        data=data,
        user_id=user_id,
    )
    return {"status": "success", **result.to_dict()}


@router.get("/uploads/{upload_id}", tags=["uploads"])
async def get_upload(
    upload_id: str,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Get an Upload by ID."""
    upload = UploadService(db).get(upload_id)
    if not upload:
        raise HTTPException(status_code=404, detail="Upload not found")
    return upload.to_dict()


@router.delete("/uploads/{upload_id}", tags=["uploads"])
async def delete_upload(
    upload_id: str,
    actor_id: str = Query("api"),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
) -> Dict[str, Any]:
    """Delete an Upload with its splits and assets."""
    result = UploadService(db).delete_cascade(upload_id, actor_id=actor_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Upload not found")

    freed = _free_blobs(blob_store, result.blob_keys)
    return {"status": "success", **result.to_dict(), "blobs_deleted": freed}


# =============================================================================
# Split Endpoints
# =============================================================================


def _split_service(db: Session, settings: Settings) -> SplitService:
    return SplitService(db, enforce_transitions=settings.enforce_split_transitions)


@router.post("/uploads/{upload_id}/splits", status_code=201, tags=["splits"])
async def create_split(
    upload_id: str,
    split: SplitCreate,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """Start a split over an Upload."""
    db_split = _split_service(db, settings).create(
        upload_id,
        status=split.status,
        metrics=split.metrics,
        project_id=split.project_id,
    )
    return {"status": "success", "split": db_split.to_dict()}


@router.get("/uploads/{upload_id}/splits", tags=["splits"])
async def list_upload_splits(
    upload_id: str,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> List[Dict[str, Any]]:
    """Splits of an Upload, newest first."""
    if not UploadService(db).get(upload_id):
        raise HTTPException(status_code=404, detail="Upload not found")
    splits = _split_service(db, settings).list_for_upload(upload_id)
    return [s.to_dict() for s in splits]


@router.get("/splits/recent", tags=["splits"])
async def list_recent_splits(
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> List[Dict[str, Any]]:
    """Most recent splits first."""
    splits = _split_service(db, settings).list_recent(
        limit=limit or settings.recent_splits_default_limit,
        cap=settings.recent_splits_cap,
    )
    return [s.to_dict() for s in splits]


@router.get("/splits/{split_id}", tags=["splits"])
async def get_split(
    split_id: str,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """Get a Split by ID."""
    split = _split_service(db, settings).get(split_id)
    if not split:
        raise HTTPException(status_code=404, detail="Split not found")
    return split.to_dict()


@router.patch("/splits/{split_id}/status", tags=["splits"])
async def update_split_status(
    split_id: str,
    update: SplitStatusUpdate,
    actor_id: str = Query("api"),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """Update a Split's status."""
    split = _split_service(db, settings).update_status(
        split_id, update.status, actor_id=actor_id
    )
    if not split:
        raise HTTPException(status_code=404, detail="Split not found")
    return {"status": "success", "split": split.to_dict()}


@router.patch("/splits/{split_id}/metrics", tags=["splits"])
async def merge_split_metrics(
    split_id: str,
    update: SplitMetricsUpdate,
    actor_id: str = Query("api"),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """Shallow-merge metrics into a Split."""
    split = _split_service(db, settings).merge_metrics(
        split_id, update.metrics, actor_id=actor_id
    )
    if not split:
        raise HTTPException(status_code=404, detail="Split not found")
    return {"status": "success", "split": split.to_dict()}


@router.get("/splits/{split_id}/assets", tags=["splits"])
async def list_split_assets(
    split_id: str,
    kind: Optional[AssetKind] = None,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> List[Dict[str, Any]]:
    """List a Split's assets in order."""
    if not _split_service(db, settings).get(split_id):
        raise HTTPException(status_code=404, detail="Split not found")
    assets = AssetService(db).list_for_split(split_id, kind=kind)
    return [a.to_dict() for a in assets]


@router.post("/splits/{split_id}/crops", tags=["splits"])
async def create_split_crops(
    split_id: str,
    request: CropRequest,
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """Crop the Split's source image into one image asset per section."""
    split = _split_service(db, settings).get(split_id)
    if not split:
        raise HTTPException(status_code=404, detail="Split not found")

    upload = UploadService(db).get(split.upload_id)
    if not upload or not upload.storage_key:
        raise HTTPException(
            status_code=409, detail="Split has no stored source image"
        )

    source = blob_store.read_bytes(upload.storage_key)
    result = ImageCropService(db, blob_store).create_crops_for_split(
        split_id, source, request.sections, force=request.force
    )
    return {"status": "success", **result.to_dict()}


# =============================================================================
# Signed File Endpoints
# =============================================================================


@router.post("/files/sign", tags=["files"])
async def sign_file(
    request: SignRequest,
    blob_store: BlobStore = Depends(get_blob_store),
    signer: SignedAccessService = Depends(get_signer),
) -> Dict[str, Any]:
    """Issue a short-lived download grant for a stored blob."""
    if not blob_store.exists(request.key):
        raise HTTPException(status_code=404, detail="File not found")

    grant = signer.issue(request.key, request.ttl_ms)
    return {
        "key": grant.key,
        "exp": grant.exp,
        "sig": grant.sig,
        "url": grant.to_url(DOWNLOAD_PATH),
    }


@router.get(DOWNLOAD_PATH, tags=["files"])
async def download_file(
    key: str,
    exp: int = 0,
    sig: Optional[str] = None,
    blob_store: BlobStore = Depends(get_blob_store),
    signer: SignedAccessService = Depends(get_signer),
) -> StreamingResponse:
    """Stream a blob to the holder of a valid grant."""
    signer.authorize(key, exp, sig)
    stream = blob_store.get_stream(key)
    return StreamingResponse(stream, media_type=content_type_for_key(key))


# =============================================================================
# Module Version Endpoints
# =============================================================================


@router.post("/modules/{module_id}/versions", status_code=201, tags=["versions"])
async def create_version(
    module_id: str,
    request: VersionCreateRequest,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Package a new version of a module."""
    version = ModuleVersionStore(db).create_version(
        module_id, request.package_id, request.files, request.meta
    )
    return {"status": "success", "version": version.to_dict()}


@router.get("/modules/{module_id}/versions", tags=["versions"])
async def list_versions(
    module_id: str,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Version index of a module, without file content."""
    return {
        "module_id": module_id,
        "versions": ModuleVersionStore(db).get_index(module_id),
    }


@router.get("/modules/{module_id}/history", tags=["versions"])
async def get_module_history(
    module_id: str,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Full version history of a module with deployment statistics."""
    return ModuleVersionStore(db).get_module_history(module_id).model_dump(mode="json")


@router.post("/modules/{module_id}/archive", tags=["versions"])
async def archive_versions(
    module_id: str,
    keep: Optional[int] = Query(None, ge=0),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """Archive versions beyond the newest ``keep``."""
    keep_count = settings.version_keep_count if keep is None else keep
    archived = ModuleVersionStore(db).archive_old_versions(module_id, keep_count)
    return {"status": "success", "module_id": module_id, "archived": archived}


@router.delete("/modules/{module_id}/archived", tags=["versions"])
async def delete_archived_versions(
    module_id: str,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Permanently remove a module's archived versions."""
    deleted = ModuleVersionStore(db).delete_archived_versions(module_id)
    return {"status": "success", "module_id": module_id, "deleted": deleted}


@router.get("/versions/compare", tags=["versions"])
async def compare_versions(
    a: str,
    b: str,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Diff version ``a`` against version ``b``."""
    return ModuleVersionStore(db).compare_versions(a, b).model_dump(mode="json")


@router.get("/versions/stats", tags=["versions"])
async def version_statistics(db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Store-wide version counts and size."""
    return ModuleVersionStore(db).get_statistics().model_dump()


@router.get("/versions/{version_id}", tags=["versions"])
async def get_version(
    version_id: str,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Get a full version document."""
    version = ModuleVersionStore(db).get_version(version_id)
    if not version:
        raise HTTPException(status_code=404, detail="Version not found")
    return version.to_dict()


@router.get("/versions/{version_id}/verify", tags=["versions"])
async def verify_version(
    version_id: str,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Recompute a version's checksum."""
    return {
        "version_id": version_id,
        "checksum_valid": ModuleVersionStore(db).verify_checksum(version_id),
    }


@router.patch("/versions/{version_id}/status", tags=["versions"])
async def update_version_status(
    version_id: str,
    update: VersionStatusUpdate,
    actor_id: str = Query("api"),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Move a version through its lifecycle."""
    version = ModuleVersionStore(db).update_version_status(
        version_id, update.status, update.deployment_info, actor_id=actor_id
    )
    return {"status": "success", "version": version.to_dict()}


@router.post("/versions/{version_id}/rollback", status_code=201, tags=["versions"])
async def rollback_version(
    version_id: str,
    request: RollbackRequest,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Create a new version restoring the target version's files."""
    version = ModuleVersionStore(db).rollback_to_version(
        version_id,
        request.target_version_id,
        request.reason,
        request.performed_by,
    )
    return {"status": "success", "version": version.to_dict()}
