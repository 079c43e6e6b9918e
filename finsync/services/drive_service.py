"""Google Drive service for archiving classified documents."""

import io
from typing import Any, Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.http import MediaIoBaseUpload

from finsync.config.settings import DriveConfig, settings
from finsync.models.document import DriveFile
from finsync.utils.errors import AuthExpiredError
from finsync.utils.google_api import AuthExpiredCallback, RequestExecutor, authorized_http_factory
from finsync.utils.google_auth import load_credentials
from finsync.utils.logging import get_logger
from finsync.utils.retry import RetryPolicy

logger = get_logger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
FILE_FIELDS = "id, name, mimeType, webViewLink"


def escape_query_value(value: str) -> str:
    """Escape a value for use inside single quotes in a Drive ``q`` expression."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


class DriveService:
    """Google Drive destination store (OAuth token shared with Gmail)."""

    def __init__(
        self,
        config: Optional[DriveConfig] = None,
        service: Any = None,
        retry: Optional[RetryPolicy] = None,
        on_auth_expired: Optional[AuthExpiredCallback] = None,
        credentials: Optional[Credentials] = None,
    ) -> None:
        self.config = config or settings.drive
        if service is None:
            credentials = credentials or load_credentials(settings.gmail)
            service = build("drive", "v3", credentials=credentials, cache_discovery=False)
        self.service = service
        # Uploads and lookups run concurrently; each request needs its own transport
        self.executor = RequestExecutor(
            retry or RetryPolicy.from_config(settings.retry),
            http_factory=authorized_http_factory(credentials) if credentials else None,
            on_auth_expired=on_auth_expired,
        )
        logger.info("Drive service initialized", root_folder_id=self.config.root_folder_id)

    async def _execute(self, build_request, operation: str) -> Any:
        return await self.executor.execute(build_request, operation)

    async def find_folder(self, parent_id: str, name: str) -> Optional[str]:
        """Return the ID of the folder ``name`` directly under ``parent_id``, if any."""
        query = (
            f"name='{escape_query_value(name)}' and "
            f"'{escape_query_value(parent_id)}' in parents and "
            f"mimeType='{FOLDER_MIME_TYPE}' and "
            f"trashed=false"
        )
        results = await self._execute(
            lambda: self.service.files().list(q=query, spaces="drive", fields="files(id, name)"),
            "drive.folders.find",
        )
        folders = results.get("files", [])
        return folders[0]["id"] if folders else None

    async def create_folder(self, parent_id: str, name: str) -> str:
        """Create folder ``name`` under ``parent_id`` and return its ID."""
        folder_metadata = {
            "name": name,
            "mimeType": FOLDER_MIME_TYPE,
            "parents": [parent_id],
        }
        folder = await self._execute(
            lambda: self.service.files().create(body=folder_metadata, fields="id"),
            "drive.folders.create",
        )
        return folder["id"]

    async def find_file(self, name: str, folder_id: str) -> Optional[DriveFile]:
        """
        Look up a file by exact name in a folder.

        Lookup failures other than an expired token are logged and reported
        as "not found", so the caller proceeds with an upload.
        """
        query = (
            f"name='{escape_query_value(name)}' and "
            f"'{escape_query_value(folder_id)}' in parents and "
            f"trashed=false"
        )
        try:
            results = await self._execute(
                lambda: self.service.files().list(q=query, spaces="drive", fields=f"files({FILE_FIELDS})"),
                "drive.files.find",
            )
        except AuthExpiredError:
            raise
        except Exception as e:
            logger.warning("File lookup failed, assuming not present", filename=name, folder_id=folder_id, error=str(e))
            return None

        files = results.get("files", [])
        return DriveFile.model_validate(files[0]) if files else None

    async def upload_file(
        self,
        name: str,
        content: bytes,
        folder_id: str,
        mime_type: Optional[str] = None,
    ) -> DriveFile:
        """
        Upload bytes as a new file.

        Args:
            name: File name in Drive
            content: File content
            folder_id: Destination folder ID
            mime_type: Content type (defaults to ``DRIVE_DEFAULT_MIME_TYPE``)

        Returns:
            The created file
        """
        mime_type = mime_type or self.config.default_mime_type
        file_metadata = {"name": name, "parents": [folder_id]}

        def create_request():
            # A fresh stream per attempt; a failed upload leaves the old one consumed
            media = MediaIoBaseUpload(io.BytesIO(content), mimetype=mime_type, resumable=True)
            return self.service.files().create(body=file_metadata, media_body=media, fields=FILE_FIELDS)

        created = await self._execute(create_request, "drive.files.upload")
        file = DriveFile.model_validate(created)

        logger.info(
            "Document uploaded to Drive",
            filename=name,
            folder_id=folder_id,
            file_id=file.id,
            size_bytes=len(content),
        )
        return file

    async def list_files(self, folder_id: str) -> list[DriveFile]:
        """List non-folder files directly under ``folder_id``."""
        query = (
            f"'{escape_query_value(folder_id)}' in parents and "
            f"mimeType!='{FOLDER_MIME_TYPE}' and "
            f"trashed=false"
        )
        files: list[DriveFile] = []
        page_token: Optional[str] = None

        while True:
            results = await self._execute(
                lambda: self.service.files().list(
                    q=query,
                    spaces="drive",
                    fields=f"nextPageToken, files({FILE_FIELDS})",
                    pageToken=page_token,
                ),
                "drive.files.list",
            )
            files.extend(DriveFile.model_validate(f) for f in results.get("files", []))
            page_token = results.get("nextPageToken")
            if not page_token:
                return files
