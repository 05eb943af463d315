# backend/services/drive_service.py
import io
import os
import time
import uuid
import logging
from typing import Optional
import httplib2
import httpx
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from errors import NotFound, ProxyFailed, UploadFailed

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
ASSETS_FOLDER_NAME = "Form Assets"
SUBMISSIONS_FOLDER_NAME = "File Uploader Pro"
DEFAULT_FORM_TITLE = "Untitled Form"
PUBLIC_DOWNLOAD_URL = "https://drive.google.com/uc"

# API errors plus the transport failures httplib2 raises under googleapiclient.
REMOTE_ERRORS = (HttpError, httplib2.HttpLib2Error, OSError)

def _build(api: str, version: str, access_token: str):
    creds = Credentials(token=access_token)
    try:
        return build(api, version, credentials=creds, cache_discovery=False)
    except HttpError as error:
        logger.error("An error occurred building the %s service: %s", api, error)
        raise

def get_drive_service(access_token: str):
    """Builds an authenticated Google Drive v3 service object."""
    return _build("drive", "v3", access_token)

def get_sheets_service(access_token: str):
    """Builds an authenticated Google Sheets v4 service object."""
    return _build("sheets", "v4", access_token)

def escape_query_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")

def find_folder(service, name: str, parent_id: Optional[str] = None) -> Optional[str]:
    query = f"name = '{escape_query_value(name)}' and mimeType = '{FOLDER_MIME_TYPE}' and trashed = false"
    if parent_id:
        query += f" and '{escape_query_value(parent_id)}' in parents"
    response = service.files().list(
        q=query, fields="files(id)", pageSize=1,
        supportsAllDrives=True, includeItemsFromAllDrives=True,
    ).execute()
    files = response.get("files", [])
    return files[0]["id"] if files else None

def find_or_create_folder(service, name: str, parent_id: Optional[str] = None) -> str:
    """Returns the id of the named folder, creating it when absent.

    Lookup and create are separate calls, so two concurrent callers can both
    miss and both create a folder with the same name.
    """
    folder_id = find_folder(service, name, parent_id)
    if folder_id:
        return folder_id
    metadata = {"name": name, "mimeType": FOLDER_MIME_TYPE}
    if parent_id:
        metadata["parents"] = [parent_id]
    created = service.files().create(body=metadata, fields="id", supportsAllDrives=True).execute()
    logger.info("Created Drive folder %r (%s)", name, created["id"])
    return created["id"]

def proxy_url(file_id: str) -> str:
    return f"/api/images/{file_id}"

def view_url(file_id: str) -> str:
    return f"https://drive.google.com/file/d/{file_id}/view"

def unique_file_name(file_name: Optional[str], now: Optional[float] = None) -> str:
    """``report.pdf`` -> ``report_<epoch ms>_<7 random chars>.pdf``"""
    base, ext = os.path.splitext(file_name or "upload")
    stamp = int((now if now is not None else time.time()) * 1000)
    return f"{base or 'upload'}_{stamp}_{uuid.uuid4().hex[:7]}{ext}"

def _create_file(service, content: bytes, mime_type: Optional[str], name: str, folder_id: str) -> dict:
    media = MediaIoBaseUpload(io.BytesIO(content), mimetype=mime_type or "application/octet-stream", resumable=False)
    return service.files().create(
        body={"name": name, "parents": [folder_id]},
        media_body=media,
        fields="id, webContentLink, webViewLink",
        supportsAllDrives=True,
    ).execute()

def _share_publicly(service, file_id: str):
    try:
        service.permissions().create(
            fileId=file_id, body={"role": "reader", "type": "anyone"}, supportsAllDrives=True,
        ).execute()
    except REMOTE_ERRORS as error:
        # the file stays in Drive but is not shared
        logger.warning("Uploaded file %s left private, permission grant failed: %s", file_id, error)
        raise UploadFailed("File uploaded but could not be shared publicly.", details=str(error))

def upload_asset(service, content: bytes, mime_type: str, file_name: str,
                 parent_folder_id: Optional[str] = None, form_title: Optional[str] = None) -> dict:
    try:
        folder_id = parent_folder_id or find_or_create_folder(service, form_title or DEFAULT_FORM_TITLE)
        assets_folder_id = find_or_create_folder(service, ASSETS_FOLDER_NAME, folder_id)
        created = _create_file(service, content, mime_type, file_name, assets_folder_id)
    except REMOTE_ERRORS as error:
        logger.error("Drive upload error: %s", error)
        raise UploadFailed("Failed to upload to Drive. Make sure you are authenticated.", details=str(error))

    file_id = created["id"]
    _share_publicly(service, file_id)
    return {
        "url": proxy_url(file_id),
        "viewUrl": view_url(file_id),
        "fileId": file_id,
        "folderId": folder_id,
    }

def upload_submission_file(service, content: bytes, mime_type: Optional[str], file_name: Optional[str],
                           root_folder_id: Optional[str] = None) -> dict:
    """Relays a submitter's file into the form owner's "File Uploader Pro" folder."""
    unique_name = unique_file_name(file_name)
    try:
        folder_id = find_or_create_folder(service, SUBMISSIONS_FOLDER_NAME, root_folder_id)
        created = _create_file(service, content, mime_type, unique_name, folder_id)
    except REMOTE_ERRORS as error:
        logger.error("Drive relay error for %s: %s", file_name, error)
        raise UploadFailed("Failed to upload file to Google Drive", details=str(error))

    file_id = created["id"]
    _share_publicly(service, file_id)
    logger.info("Relayed %s to Drive as %s (%s)", file_name, unique_name, file_id)
    return {
        "url": proxy_url(file_id),
        "viewUrl": created.get("webViewLink") or view_url(file_id),
        "downloadUrl": created.get("webContentLink"),
        "fileId": file_id,
        "folderId": folder_id,
        "uniqueFileName": unique_name,
    }

async def fetch_public_file(file_id: str):
    """Downloads a publicly shared Drive file, returning (content, content_type)."""
    try:
        async with httpx.AsyncClient(follow_redirects=True, timeout=30.0) as client:
            response = await client.get(PUBLIC_DOWNLOAD_URL, params={"export": "download", "id": file_id})
    except httpx.HTTPError as error:
        logger.warning("Image proxy could not reach Drive for file %s: %s", file_id, error)
        raise ProxyFailed("Failed to fetch image", details=str(error))
    if response.status_code != 200:
        logger.warning("Image proxy got %s for file %s", response.status_code, file_id)
        raise NotFound("Image not found")
    return response.content, response.headers.get("content-type", "application/octet-stream")
