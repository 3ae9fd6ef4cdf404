"""
CosmoCard Backend — Google Drive Collaborator
===============================================

What:  Folder and file operations on Google Drive, keyed by Drive ids.
Why:   Drive is the blob store for labels, INCI documents and photos; the
       orchestrator only ever holds the ids it gets back.
How:   google-api-python-client v3 requests executed on the thread pool
       (the client is synchronous). HttpError and transport failures
       (timeouts, socket errors, token refresh) become UpstreamError.
       No retry: a failed Drive call surfaces to the caller immediately.

Folder layout:
    {root}/{user_id}/{card_id} {product_name}/{photos folder}

Shared drive mode:
    When GOOGLE_DRIVE_SHARED_DRIVE_ID is set, every call carries
    supportsAllDrives, and listings are scoped with corpora=drive. Service
    accounts have no storage quota of their own, so uploads into a plain
    "My Drive" folder only work when the folder owner shares it.
"""

import io
import logging
from typing import Any, Dict, List, Optional

from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload
from starlette.concurrency import run_in_threadpool

from cosmocard.config import settings
from cosmocard.exceptions import UpstreamError
from cosmocard.services.google_auth import TRANSPORT_ERRORS, GoogleClients, google_clients

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"


def folder_url(folder_id: str) -> str:
    return f"https://drive.google.com/drive/folders/{folder_id}"


def file_url(file_id: str) -> str:
    return f"https://drive.google.com/file/d/{file_id}/view"


def _escape_query(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class DriveService:
    def __init__(self, clients: Optional[GoogleClients] = None):
        self._clients = clients if clients is not None else google_clients

    # ── Request plumbing ──────────────────────────────────────────────────

    def _write_options(self) -> Dict[str, Any]:
        return {"supportsAllDrives": True} if settings.shared_drive_enabled else {}

    def _list_options(self) -> Dict[str, Any]:
        if not settings.shared_drive_enabled:
            return {}
        return {
            "supportsAllDrives": True,
            "includeItemsFromAllDrives": True,
            "corpora": "drive",
            "driveId": settings.google_drive_shared_drive_id,
        }

    async def _execute(self, request: Any, action: str) -> Any:
        try:
            return await run_in_threadpool(
                request.execute, http=self._clients.authorized_http()
            )
        except HttpError as e:
            logger.error("Drive %s failed: %s", action, e)
            raise UpstreamError(
                service="drive",
                message=f"Google Drive {action} failed: {e}",
                context={"status": getattr(e.resp, "status", None)},
            ) from e
        except TRANSPORT_ERRORS as e:
            logger.error("Drive %s failed: %s: %s", action, type(e).__name__, e)
            raise UpstreamError(
                service="drive",
                message=f"Google Drive {action} failed: {type(e).__name__}",
                context={"error": str(e)},
            ) from e

    # ── Folders ───────────────────────────────────────────────────────────

    async def create_folder(self, name: str, parent_id: str) -> str:
        metadata = {"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [parent_id]}
        request = self._clients.drive.files().create(
            body=metadata, fields="id, name", **self._write_options()
        )
        folder = await self._execute(request, "create folder")
        logger.info("Created Drive folder '%s' (%s)", name, folder["id"])
        return folder["id"]

    async def rename_folder(self, folder_id: str, new_name: str) -> None:
        request = self._clients.drive.files().update(
            fileId=folder_id, body={"name": new_name}, fields="id, name", **self._write_options()
        )
        await self._execute(request, "rename folder")
        logger.info("Renamed Drive folder %s to '%s'", folder_id, new_name)

    async def find_folder_by_name(self, name: str, parent_id: Optional[str] = None) -> Optional[str]:
        """Id of the first non-trashed folder with this name under the parent, or None."""
        parent = parent_id or settings.google_drive_root_folder_id
        query = (
            f"mimeType='{FOLDER_MIME_TYPE}' and name='{_escape_query(name)}' "
            f"and '{parent}' in parents and trashed=false"
        )
        request = self._clients.drive.files().list(
            q=query, fields="files(id, name)", pageSize=10, **self._list_options()
        )
        response = await self._execute(request, "find folder")
        files = response.get("files", [])
        return files[0]["id"] if files else None

    async def ensure_user_folder(self, user_id: str) -> str:
        existing = await self.find_folder_by_name(user_id)
        if existing:
            return existing
        return await self.create_folder(user_id, settings.google_drive_root_folder_id)

    # ── Files ─────────────────────────────────────────────────────────────

    async def upload_file(self, name: str, content: bytes, mime_type: str, parent_id: str) -> str:
        media = MediaIoBaseUpload(io.BytesIO(content), mimetype=mime_type, resumable=False)
        request = self._clients.drive.files().create(
            body={"name": name, "parents": [parent_id]},
            media_body=media,
            fields="id, name",
            **self._write_options(),
        )
        uploaded = await self._execute(request, "upload")
        logger.info("Uploaded '%s' (%d bytes) to Drive as %s", name, len(content), uploaded["id"])
        return uploaded["id"]

    async def list_files(self, parent_id: str) -> List[Dict[str, str]]:
        request = self._clients.drive.files().list(
            q=f"'{parent_id}' in parents and trashed=false",
            fields="files(id, name, mimeType)",
            pageSize=100,
            **self._list_options(),
        )
        response = await self._execute(request, "list files")
        return [
            {"id": f["id"], "name": f.get("name", ""), "mimeType": f.get("mimeType", "")}
            for f in response.get("files", [])
        ]

    async def get_file(self, file_id: str) -> Dict[str, Any]:
        """Download a file: {"content": bytes, "mimeType": str}."""
        meta_request = self._clients.drive.files().get(
            fileId=file_id, fields="mimeType", **self._write_options()
        )
        meta = await self._execute(meta_request, "get file metadata")
        media_request = self._clients.drive.files().get_media(
            fileId=file_id, **self._write_options()
        )
        content = await self._execute(media_request, "download")
        return {"content": content, "mimeType": meta.get("mimeType", "application/octet-stream")}

    async def delete_file(self, file_id: str) -> None:
        """Delete a file or folder (used to compensate a failed card create)."""
        request = self._clients.drive.files().delete(fileId=file_id, **self._write_options())
        await self._execute(request, "delete")
        logger.info("Deleted Drive item %s", file_id)


drive_service = DriveService()
