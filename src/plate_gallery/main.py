from __future__ import annotations

import logging
from dataclasses import asdict
from pathlib import Path
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from starlette.concurrency import run_in_threadpool

from . import palindrome_utils
from .catalog_manager import CatalogManager, PalindromeValidationError
from .configuration import load_config
from .database import PlateDatabase
from .key_manager import KeyManager, keys_match
from .middleware import RateLimiter, RequestLoggingMiddleware
from .models import (
    AdminKeyCreate,
    APIKeyCreated,
    APIKeyInfo,
    Collector,
    CollectorCreate,
    CollectorProfile,
    CollectorWithStats,
    GalleryStats,
    LeaderboardEntry,
    Palindrome,
    PalindromeCreate,
    PalindromeWithCollector,
    PlateCheck,
    UploadResult,
    UserProfile,
)
from .storage_service import StorageService, UploadRejected

logger = logging.getLogger(__name__)

config = load_config()

app = FastAPI(title="Palindrome Plates API", version="0.1.0")

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(config.cors.allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

database = PlateDatabase(Path(config.database.path))
key_manager = KeyManager(db_path=str(config.database.path), key_prefix=str(config.auth.key_prefix))
catalog = CatalogManager(database)
storage = StorageService(config.storage)
upload_limiter = RateLimiter(requests_per_minute=int(config.rate_limit.upload_requests_per_minute))
# Expired limiter windows are swept once this many clients are tracked
RATE_LIMIT_CLEANUP_THRESHOLD = 1024


def get_catalog() -> CatalogManager:
    return catalog


def get_storage() -> StorageService:
    return storage


def get_key_manager() -> KeyManager:
    return key_manager


def require_master_key(x_api_key: str = Header(...)) -> None:
    if not keys_match(x_api_key, str(config.auth.master_key)):
        raise HTTPException(status_code=401, detail="Invalid master key")


def require_admin(x_api_key: str = Header(...), keys: KeyManager = Depends(get_key_manager)) -> UserProfile:
    record = keys.validate_key(x_api_key)
    if record is None:
        raise HTTPException(status_code=401, detail="Unauthorized")

    profile = database.get_user_profile(record.user_id)
    if profile is None or not profile.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return profile


def limit_uploads(request: Request) -> None:
    client_id = request.client.host if request.client else "unknown"
    if len(upload_limiter.requests) > RATE_LIMIT_CLEANUP_THRESHOLD:
        upload_limiter.cleanup()
    if not upload_limiter.is_allowed(client_id):
        raise HTTPException(status_code=429, detail="Too many uploads, slow down")


@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/plates/check", response_model=PlateCheck)
def check_plate(plate: str = Query("")) -> PlateCheck:
    return PlateCheck(
        plate=plate,
        normalized=palindrome_utils.normalize_plate(plate),
        is_palindrome=palindrome_utils.is_palindrome(plate),
    )


@app.get("/stats", response_model=GalleryStats)
def gallery_stats(manager: CatalogManager = Depends(get_catalog)) -> GalleryStats:
    return manager.gallery_stats()


@app.get("/leaderboard", response_model=list[LeaderboardEntry])
def leaderboard(manager: CatalogManager = Depends(get_catalog)) -> List[LeaderboardEntry]:
    return manager.leaderboard()


@app.get("/collectors", response_model=list[Collector])
def list_collectors(manager: CatalogManager = Depends(get_catalog)) -> List[Collector]:
    return manager.list_collectors()


@app.get("/collectors/stats", response_model=list[CollectorWithStats])
def list_collectors_with_stats(manager: CatalogManager = Depends(get_catalog)) -> List[CollectorWithStats]:
    return manager.list_collectors_with_stats()


@app.get("/collectors/{collector_id}", response_model=CollectorProfile)
def get_collector(collector_id: str, manager: CatalogManager = Depends(get_catalog)) -> CollectorProfile:
    try:
        return manager.get_collector_profile(collector_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail="Collector not found") from exc


@app.post("/collectors", response_model=Collector, status_code=201)
def create_collector(
    payload: CollectorCreate,
    admin: UserProfile = Depends(require_admin),
    manager: CatalogManager = Depends(get_catalog),
) -> Collector:
    return manager.create_collector(payload, admin_id=admin.id)


@app.delete("/collectors/{collector_id}")
def delete_collector(
    collector_id: str,
    admin: UserProfile = Depends(require_admin),
    manager: CatalogManager = Depends(get_catalog),
) -> Dict[str, str]:
    try:
        manager.delete_collector(collector_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail="Collector not found") from exc
    return {"status": "deleted"}


@app.get("/palindromes", response_model=list[PalindromeWithCollector])
def list_palindromes(
    search: Optional[str] = None,
    collector_id: Optional[str] = None,
    location: Optional[str] = None,
    car_type: Optional[str] = None,
    manager: CatalogManager = Depends(get_catalog),
) -> List[PalindromeWithCollector]:
    return manager.list_palindromes(search=search, collector_id=collector_id, location=location, car_type=car_type)


@app.get("/palindromes/{palindrome_id}", response_model=PalindromeWithCollector)
def get_palindrome(palindrome_id: str, manager: CatalogManager = Depends(get_catalog)) -> PalindromeWithCollector:
    try:
        return manager.get_palindrome(palindrome_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail="Palindrome not found") from exc


@app.post("/palindromes", response_model=Palindrome, status_code=201)
def create_palindrome(
    payload: PalindromeCreate,
    admin: UserProfile = Depends(require_admin),
    manager: CatalogManager = Depends(get_catalog),
) -> Palindrome:
    try:
        return manager.create_palindrome(payload, admin_id=admin.id)
    except PalindromeValidationError as exc:
        raise HTTPException(status_code=400, detail={"message": "Invalid palindrome", "errors": exc.errors}) from exc


@app.delete("/palindromes/{palindrome_id}")
def delete_palindrome(
    palindrome_id: str,
    admin: UserProfile = Depends(require_admin),
    manager: CatalogManager = Depends(get_catalog),
) -> Dict[str, str]:
    try:
        manager.delete_palindrome(palindrome_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail="Palindrome not found") from exc
    return {"status": "deleted"}


@app.post("/api/upload", response_model=UploadResult)
async def upload_image(
    file: Optional[UploadFile] = File(None),
    bucket: str = Form(""),
    admin: UserProfile = Depends(require_admin),
    _: None = Depends(limit_uploads),
    service: StorageService = Depends(get_storage),
) -> UploadResult:
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file provided")

    if not service.is_configured():
        raise HTTPException(status_code=503, detail="Image storage is not configured")

    # Read one byte past the limit so oversize files are detected without buffering them whole
    data = await file.read(service.max_upload_bytes + 1)
    await file.close()

    try:
        # boto3 blocks, so the write runs in the worker pool
        result = await run_in_threadpool(
            service.upload_image, data, file.filename, file.content_type or "", bucket=bucket or None
        )
    except UploadRejected as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if result is None:
        raise HTTPException(status_code=500, detail="Upload failed")

    logger.info(f"Admin {admin.id} uploaded {result.path}")
    return result


@app.post("/admin/keys", response_model=APIKeyCreated, status_code=201)
def create_admin_key(
    payload: AdminKeyCreate,
    _: None = Depends(require_master_key),
    keys: KeyManager = Depends(get_key_manager),
) -> APIKeyCreated:
    profile = database.find_user_profile_by_email(payload.email)
    if profile is None:
        profile = database.create_user_profile(payload.email, name=payload.name, is_admin=payload.is_admin)
    elif profile.is_admin != payload.is_admin:
        database.set_admin(profile.id, payload.is_admin)

    raw_key, record = keys.create_key(profile.id)
    return APIKeyCreated(api_key=raw_key, record=APIKeyInfo(**asdict(record)))


@app.get("/admin/keys", response_model=list[APIKeyInfo])
def list_admin_keys(
    _: None = Depends(require_master_key),
    keys: KeyManager = Depends(get_key_manager),
) -> List[APIKeyInfo]:
    return [APIKeyInfo(**asdict(record)) for record in keys.list_keys()]


@app.delete("/admin/keys/{key_id}")
def revoke_admin_key(
    key_id: str,
    _: None = Depends(require_master_key),
    keys: KeyManager = Depends(get_key_manager),
) -> Dict[str, str]:
    if not keys.revoke_key(key_id):
        raise HTTPException(status_code=404, detail="API key not found")
    return {"status": "revoked"}
