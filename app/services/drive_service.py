"""
Drive service: Google Drive API calls scoped to the user's app folder.

Business logic separated from the HTTP layer. Every call goes through
_drive_request with an explicit timeout and the caller's access token.
Nothing is cached between requests; the containment check walks the live
parent chain each time and fails closed on any error.
"""
import json
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Iterator
from urllib.parse import quote

import requests

from config import APP_FOLDER_NAME, DRIVE_REQUEST_TIMEOUT, DRIVE_TRANSFER_TIMEOUT
from errors import ContainmentDenied, RemoteOperationFailed

logger = logging.getLogger(__name__)

DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"
DRIVE_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files"
DRIVE_ABOUT_URL = "https://www.googleapis.com/drive/v3/about"

FOLDER_MIME = "application/vnd.google-apps.folder"
NATIVE_MIME_PREFIX = "application/vnd.google-apps."
DEFAULT_UPLOAD_MIME = "application/octet-stream"

# Native Docs/Sheets/Slides have no bytes of their own and must be exported
EXPORT_MIME_TYPES = {
    "application/vnd.google-apps.spreadsheet": (
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    ),
    "application/vnd.google-apps.presentation": (
        "application/vnd.openxmlformats-officedocument.presentationml.presentation"
    ),
    "application/vnd.google-apps.document": "application/pdf",
}
DEFAULT_EXPORT_MIME = "application/pdf"

LIST_FIELDS = "files(id,name,mimeType,webViewLink,modifiedTime,size,owners(displayName),parents)"
LIST_PAGE_SIZE = 100
UPLOAD_FIELDS = "id,name,mimeType,webViewLink,parents"
UNKNOWN_OWNER = "You"

DELETE_FORBIDDEN_MESSAGE = (
    "Delete failed: insufficient permission. The app may not have write access "
    "to this file. Files the app did not create need the full Drive scope "
    "(https://www.googleapis.com/auth/drive)."
)


def _drive_request(
    method: str,
    url: str,
    access_token: str,
    **kwargs: Any,
) -> requests.Response:
    """Call Drive API with timeout; returns the raw response without raising on status."""
    headers = {"Authorization": f"Bearer {access_token}"}
    if "headers" in kwargs:
        headers.update(kwargs.pop("headers"))
    kwargs.setdefault("timeout", DRIVE_REQUEST_TIMEOUT)
    return requests.request(method, url, headers=headers, **kwargs)


def _send(message: str, method: str, url: str, access_token: str, **kwargs: Any) -> requests.Response:
    """_drive_request that reports a transport failure as RemoteOperationFailed(message)."""
    try:
        return _drive_request(method, url, access_token, **kwargs)
    except requests.RequestException as e:
        logger.error("%s in transport: %s", message, e)
        raise RemoteOperationFailed(message, error=str(e))


def _file_url(file_id: str, action: str = "") -> str:
    """files/{id}[/action] with the id encoded as a single path segment."""
    url = f"{DRIVE_FILES_URL}/{quote(file_id, safe='')}"
    return f"{url}/{action}" if action else url


def error_payload(resp: requests.Response) -> Any:
    """Provider error body for diagnostics: parsed JSON when possible, else text."""
    try:
        return resp.json()
    except ValueError:
        return resp.text or None


def _json_or_fail(resp: requests.Response, message: str) -> dict:
    if not resp.ok:
        payload = error_payload(resp)
        logger.error("%s (HTTP %s): %s", message, resp.status_code, payload)
        raise RemoteOperationFailed(message, error=payload)
    try:
        return resp.json() if resp.content else {}
    except ValueError:
        logger.error("%s: response was not JSON", message)
        raise RemoteOperationFailed(message)


# --- Containment ---


def is_descendant(candidate_id: str, root_id: str, access_token: str) -> bool:
    """
    True if candidate_id is root_id or has root_id on its parent chain.

    Walks first parents upward one metadata call per hop. A visited set
    bounds the walk on malformed parent cycles. Any fetch error, transport
    failure or unreadable response denies.
    """
    if candidate_id == root_id:
        return True

    visited: set[str] = set()
    current_id: str | None = candidate_id
    while current_id:
        if current_id in visited:
            logger.warning("Parent cycle at %s while checking %s", current_id, candidate_id)
            return False
        visited.add(current_id)
        try:
            resp = _drive_request(
                "GET",
                _file_url(current_id),
                access_token,
                params={"fields": "parents"},
            )
            if not resp.ok:
                logger.warning(
                    "Containment check: metadata for %s returned HTTP %s",
                    current_id, resp.status_code,
                )
                return False
            parents = resp.json().get("parents") or []
        except (requests.RequestException, ValueError, AttributeError) as e:
            logger.error("Containment check failed for %s: %s", current_id, e)
            return False

        if root_id in parents:
            return True
        # Multi-parent items are followed through their first parent only
        current_id = parents[0] if parents else None
    return False


def ensure_contained(
    access_token: str,
    candidate_id: str,
    root_id: str,
    message: str = "file not allowed",
) -> None:
    """Raise ContainmentDenied unless candidate_id is inside root_id's tree."""
    if candidate_id == root_id:
        return
    if not is_descendant(candidate_id, root_id, access_token):
        logger.warning("Denied access to %s outside app folder %s", candidate_id, root_id)
        raise ContainmentDenied(candidate_id, message)


# --- App folder ---


def escape_query_value(value: str) -> str:
    """Escape a literal for a Drive query string ('...' quoted)."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def ensure_app_folder(access_token: str, folder_name: str = APP_FOLDER_NAME) -> str:
    """
    Find the non-trashed app folder owned by the connected account, or create it.
    Not atomic: two concurrent first calls can each create a folder.
    """
    q = (
        f"name = '{escape_query_value(folder_name)}' and mimeType = '{FOLDER_MIME}' "
        "and 'me' in owners and trashed = false"
    )
    message = "Failed to search for app folder"
    resp = _send(
        message,
        "GET",
        DRIVE_FILES_URL,
        access_token,
        params={"q": q, "fields": "files(id,name)", "pageSize": 1},
    )
    found = _json_or_fail(resp, message).get("files") or []
    if found and found[0].get("id"):
        logger.info("Found existing app folder %s", found[0]["id"])
        return found[0]["id"]

    created = create_folder(access_token, folder_name)
    logger.info("Created app folder %s", created["id"])
    return created["id"]


def create_folder(access_token: str, name: str, parent_id: str | None = None) -> dict:
    """Create a folder (optionally under parent_id) and return its metadata."""
    metadata: dict[str, Any] = {"name": name, "mimeType": FOLDER_MIME}
    if parent_id:
        metadata["parents"] = [parent_id]
    resp = _send(
        "Failed to create folder",
        "POST",
        DRIVE_FILES_URL,
        access_token,
        json=metadata,
        params={"fields": "id,name,mimeType,webViewLink,parents"},
    )
    folder = _json_or_fail(resp, "Failed to create folder")
    if not folder.get("id"):
        raise RemoteOperationFailed("Failed to create folder", error=folder)
    return folder


# --- Listing ---


def build_list_query(parent_id: str, search: str | None = None) -> str:
    """Drive q expression: direct children of parent_id, not trashed, optional name filter."""
    parts = [f"'{escape_query_value(parent_id)}' in parents", "trashed = false"]
    if search and search.strip():
        parts.append(f"name contains '{escape_query_value(search.strip())}'")
    return " and ".join(parts)


def normalize_file(raw: dict) -> dict:
    """Flatten a Drive file resource into the descriptor returned to callers."""
    owners = raw.get("owners") or []
    owner = owners[0].get("displayName") if owners else None
    descriptor = {
        "id": raw.get("id"),
        "name": raw.get("name"),
        "mimeType": raw.get("mimeType"),
        "modifiedTime": raw.get("modifiedTime"),
        "webViewLink": raw.get("webViewLink"),
        "owner": owner or UNKNOWN_OWNER,
    }
    # Native documents have no size
    if raw.get("size") is not None:
        descriptor["size"] = raw["size"]
    return descriptor


def list_folder(access_token: str, parent_id: str, search: str | None = None) -> list[dict]:
    """First page (up to LIST_PAGE_SIZE) of parent_id's children, normalized."""
    q = build_list_query(parent_id, search)
    resp = _send(
        "Failed to list files",
        "GET",
        DRIVE_FILES_URL,
        access_token,
        params={"q": q, "fields": LIST_FIELDS, "pageSize": LIST_PAGE_SIZE},
    )
    data = _json_or_fail(resp, "Failed to list files")
    files = [normalize_file(f) for f in data.get("files", [])]
    logger.info("Listed %d files under %s", len(files), parent_id)
    return files


# --- Upload ---


def build_multipart_body(
    metadata: dict,
    data: bytes,
    mime_type: str | None = None,
    boundary: str | None = None,
) -> tuple[bytes, str]:
    """
    multipart/related body for uploadType=multipart: a JSON metadata part
    followed by the raw bytes. Returns (body, boundary).
    """
    if boundary is None:
        boundary = f"----drive_upload_{secrets.token_hex(8)}"
    meta_part = (
        f"--{boundary}\r\n"
        "Content-Type: application/json; charset=UTF-8\r\n\r\n"
        f"{json.dumps(metadata)}\r\n"
    )
    file_header = (
        f"--{boundary}\r\n"
        f"Content-Type: {mime_type or DEFAULT_UPLOAD_MIME}\r\n\r\n"
    )
    closing = f"\r\n--{boundary}--\r\n"
    body = b"".join([
        meta_part.encode("utf-8"),
        file_header.encode("utf-8"),
        data,
        closing.encode("utf-8"),
    ])
    return body, boundary


def upload_file(
    access_token: str,
    name: str,
    data: bytes,
    parent_id: str,
    mime_type: str | None = None,
) -> dict:
    """Upload bytes into parent_id; returns {id, name, mimeType, webViewLink, parents}."""
    metadata: dict[str, Any] = {"name": name}
    if mime_type:
        metadata["mimeType"] = mime_type
    metadata["parents"] = [parent_id]

    body, boundary = build_multipart_body(metadata, data, mime_type)
    resp = _send(
        "Upload failed",
        "POST",
        DRIVE_UPLOAD_URL,
        access_token,
        params={"uploadType": "multipart", "fields": UPLOAD_FIELDS},
        headers={"Content-Type": f"multipart/related; boundary={boundary}"},
        data=body,
        timeout=DRIVE_TRANSFER_TIMEOUT,
    )
    created = _json_or_fail(resp, "Upload failed")
    logger.info("Uploaded %s as %s into %s", name, created.get("id"), parent_id)
    return created


def grant_public_read(access_token: str, file_id: str) -> bool:
    """
    Give "anyone with the link" read access. Never raises: the file already
    exists, so a failure here only leaves it private.
    """
    try:
        resp = _drive_request(
            "POST",
            _file_url(file_id, "permissions"),
            access_token,
            json={"role": "reader", "type": "anyone"},
        )
    except requests.RequestException as e:
        logger.error("Failed to set public permission on %s: %s", file_id, e)
        return False
    if not resp.ok:
        logger.error(
            "Failed to set public permission on %s (HTTP %s): %s",
            file_id, resp.status_code, error_payload(resp),
        )
        return False
    logger.info("Set public read permission on %s", file_id)
    return True


# --- Download / export ---


@dataclass
class DriveDownload:
    """Streamed file body plus the headers the caller should send."""
    chunks: Iterator[bytes]
    content_type: str
    filename: str


def export_mime_for(mime_type: str | None) -> str | None:
    """Export target for a native Google document, or None for regular binary files."""
    if not mime_type or not mime_type.startswith(NATIVE_MIME_PREFIX):
        return None
    return EXPORT_MIME_TYPES.get(mime_type, DEFAULT_EXPORT_MIME)


def _stream(resp: requests.Response, chunk_size: int = 8192) -> Iterator[bytes]:
    try:
        yield from resp.iter_content(chunk_size=chunk_size)
    finally:
        resp.close()


def download_file(access_token: str, file_id: str) -> DriveDownload:
    """Fetch metadata, then export native documents or download raw bytes."""
    meta_resp = _send(
        "Failed to fetch file metadata",
        "GET",
        _file_url(file_id),
        access_token,
        params={"fields": "id,name,mimeType"},
    )
    meta = _json_or_fail(meta_resp, "Failed to fetch file metadata")
    filename = meta.get("name") or "file"

    export_mime = export_mime_for(meta.get("mimeType"))
    if export_mime:
        resp = _send(
            "Export failed",
            "GET",
            _file_url(file_id, "export"),
            access_token,
            params={"mimeType": export_mime},
            stream=True,
            timeout=DRIVE_TRANSFER_TIMEOUT,
        )
        if not resp.ok:
            payload = error_payload(resp)
            resp.close()
            logger.error("Export of %s failed (HTTP %s): %s", file_id, resp.status_code, payload)
            raise RemoteOperationFailed("Export failed", error=payload)
        content_type = export_mime
    else:
        resp = _send(
            "Download failed",
            "GET",
            _file_url(file_id),
            access_token,
            params={"alt": "media"},
            stream=True,
            timeout=DRIVE_TRANSFER_TIMEOUT,
        )
        if not resp.ok:
            payload = error_payload(resp)
            resp.close()
            logger.error("Download of %s failed (HTTP %s): %s", file_id, resp.status_code, payload)
            raise RemoteOperationFailed("Download failed", error=payload)
        content_type = resp.headers.get("Content-Type") or DEFAULT_UPLOAD_MIME

    return DriveDownload(chunks=_stream(resp), content_type=content_type, filename=filename)


# --- Delete ---


def delete_file(access_token: str, file_id: str) -> None:
    """Permanently delete file_id. Raises RemoteOperationFailed (403 or 500) on failure."""
    resp = _send("Delete failed", "DELETE", _file_url(file_id), access_token)
    if resp.ok:
        logger.info("Deleted %s", file_id)
        return
    payload = error_payload(resp)
    logger.error("Delete of %s failed (HTTP %s): %s", file_id, resp.status_code, payload)
    if resp.status_code == 403:
        raise RemoteOperationFailed(DELETE_FORBIDDEN_MESSAGE, status_code=403, error=payload)
    raise RemoteOperationFailed("Delete failed", error=payload)


# --- Quota ---


def get_storage_quota(access_token: str) -> dict | None:
    """Drive about.storageQuota (limit/usage as byte strings), passed through as-is."""
    message = "Failed to fetch storage info"
    resp = _send(message, "GET", DRIVE_ABOUT_URL, access_token, params={"fields": "storageQuota"})
    return _json_or_fail(resp, message).get("storageQuota")
