"""
Drive router: HTTP endpoints for list, upload, download, delete, folders, quota.

Delegates Drive calls to services.drive_service and token handling to
services.token_store. Each request refreshes its own access token, then
checks that the target sits inside the user's app folder before touching it.
Failures surface as DriveError and are rendered by the handler in main.
"""
import base64
import binascii
import logging
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from auth import authorize_user_access
from database import get_db
from errors import ContainmentDenied, NoTargetFolder, RemoteOperationFailed
from services.drive_service import (
    create_folder,
    delete_file,
    download_file,
    ensure_contained,
    get_storage_quota,
    grant_public_read,
    list_folder,
    upload_file,
)
from services.token_store import get_app_folder_id, get_profile, resolve_access_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/google")


# --- Request models ---


class UploadBody(BaseModel):
    """Upload request; data is base64, optionally as a data: URL."""
    userId: str | None = None
    name: str | None = None
    mimeType: str | None = None
    data: str | None = None
    parentId: str | None = None


class FileBody(BaseModel):
    userId: str | None = None
    fileId: str | None = None


class CreateFolderBody(BaseModel):
    userId: str | None = None
    folderName: str | None = None
    parentId: str | None = None


# --- Helpers ---


def decode_base64_payload(data: str) -> bytes:
    """
    Decode base64 file content, accepting a data:<mime>;base64, prefix,
    MIME line breaks and missing = padding.
    """
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    data = "".join(data.split())
    data += "=" * (-len(data) % 4)
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="Invalid base64 data")


def content_disposition(filename: str) -> str:
    """attachment header; non-latin-1 names get an RFC 5987 filename* as well."""
    safe = filename.replace('"', "'").replace("\r", " ").replace("\n", " ")
    try:
        safe.encode("latin-1")
    except UnicodeEncodeError:
        fallback = safe.encode("ascii", "replace").decode("ascii")
        return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(safe, safe='')}"
    return f'attachment; filename="{safe}"'


# --- Endpoints ---


@router.get("/list")
def list_files(
    request: Request,
    userId: str | None = None,
    parentId: str | None = None,
    search: str | None = None,
    db: Session = Depends(get_db),
):
    """
    List the children of parentId (default: the app folder, created on first
    use). A parentId outside the app folder tree is rejected with 403.
    """
    user_id = authorize_user_access(request, userId)
    get_profile(db, user_id)
    access_token = resolve_access_token(db, user_id)

    app_folder_id = get_app_folder_id(db, user_id, access_token, create_if_missing=not parentId)
    if parentId:
        if not app_folder_id:
            # Without an app folder nothing can be proven in scope
            raise ContainmentDenied(parentId, "parentId not allowed")
        ensure_contained(access_token, parentId, app_folder_id, "parentId not allowed")
        parent = parentId
    else:
        if not app_folder_id:
            raise RemoteOperationFailed("Failed to resolve app folder")
        parent = app_folder_id

    logger.info("Listing %s for user %s (search=%r)", parent, user_id, search)
    files = list_folder(access_token, parent, search)
    return {"success": True, "files": files}


@router.post("/upload")
def upload(
    body: UploadBody,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Upload a base64 file into parentId (default: the app folder) and make it
    readable by anyone with the link. A failed sharing step is only logged.
    """
    if not body.userId or not body.name or not body.data:
        raise HTTPException(status_code=400, detail="userId, name and data required")
    user_id = authorize_user_access(request, body.userId)
    get_profile(db, user_id)
    access_token = resolve_access_token(db, user_id)

    app_folder_id = get_app_folder_id(db, user_id, access_token, create_if_missing=True)
    target = body.parentId or app_folder_id
    if not target:
        raise NoTargetFolder()
    if target != app_folder_id:
        if not app_folder_id:
            raise ContainmentDenied(target, "Target parent not allowed")
        ensure_contained(access_token, target, app_folder_id, "Target parent not allowed")

    content = decode_base64_payload(body.data)
    created = upload_file(access_token, body.name, content, target, body.mimeType)
    if created.get("id"):
        grant_public_read(access_token, created["id"])
    return {"success": True, "file": created}


@router.get("/download")
def download(
    request: Request,
    userId: str | None = None,
    fileId: str | None = None,
    db: Session = Depends(get_db),
):
    """
    Stream a file back as an attachment. Native Docs/Sheets/Slides are
    exported to PDF/XLSX/PPTX.
    """
    if not userId or not fileId:
        raise HTTPException(status_code=400, detail="userId and fileId required")
    user_id = authorize_user_access(request, userId)
    get_profile(db, user_id)
    access_token = resolve_access_token(db, user_id)

    app_folder_id = get_app_folder_id(db, user_id, access_token)
    if app_folder_id:
        ensure_contained(access_token, fileId, app_folder_id)

    result = download_file(access_token, fileId)
    return StreamingResponse(
        result.chunks,
        media_type=result.content_type,
        headers={"Content-Disposition": content_disposition(result.filename)},
    )


@router.post("/delete")
def delete(
    body: FileBody,
    request: Request,
    db: Session = Depends(get_db),
):
    """Delete a file inside the app folder tree."""
    if not body.userId or not body.fileId:
        raise HTTPException(status_code=400, detail="userId and fileId required")
    user_id = authorize_user_access(request, body.userId)
    get_profile(db, user_id)
    access_token = resolve_access_token(db, user_id)

    app_folder_id = get_app_folder_id(db, user_id, access_token)
    if app_folder_id:
        ensure_contained(access_token, body.fileId, app_folder_id)

    delete_file(access_token, body.fileId)
    return {"success": True}


@router.post("/create-folder")
def create_subfolder(
    body: CreateFolderBody,
    request: Request,
    db: Session = Depends(get_db),
):
    """Create a folder under parentId (default: the app folder)."""
    if not body.userId or not body.folderName or not body.folderName.strip():
        raise HTTPException(status_code=400, detail="userId and folderName required")
    user_id = authorize_user_access(request, body.userId)
    get_profile(db, user_id)
    access_token = resolve_access_token(db, user_id)

    app_folder_id = get_app_folder_id(db, user_id, access_token, create_if_missing=True)
    parent = body.parentId or app_folder_id
    if not parent:
        raise RemoteOperationFailed("Failed to resolve app folder")
    if parent != app_folder_id:
        if not app_folder_id:
            raise ContainmentDenied(parent, "parentId not allowed")
        ensure_contained(access_token, parent, app_folder_id, "parentId not allowed")

    folder = create_folder(access_token, body.folderName.strip(), parent)
    return {"success": True, "folder": folder}


@router.get("/storage")
def storage(
    request: Request,
    userId: str | None = None,
    db: Session = Depends(get_db),
):
    """Drive storage quota (limit/usage byte strings) for the connected account."""
    user_id = authorize_user_access(request, userId)
    get_profile(db, user_id)
    access_token = resolve_access_token(db, user_id)
    return {"success": True, "storageQuota": get_storage_quota(access_token)}
