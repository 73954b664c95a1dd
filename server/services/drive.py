"""Google Drive listing client and owner directory.

Folder layout under DRIVE_ROOT_FOLDER_ID:

    <root>/<group folder>/<owner folder>/<files>

Group folders (VO, Rekenen, WO, ...) are walked one level deep and every
sub-folder that is not itself a subject name is an owner. The owner id and
container id are both the owner folder's Drive id.

API Reference: https://developers.google.com/drive/api/v3/reference
"""

import asyncio
from typing import Any, Dict, List, Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from core.cache import CacheService
from core.clock import parse_rfc3339
from core.config import Settings
from core.logging import get_logger
from models.cache import CacheKind
from services.sync.exceptions import ConfigurationError, ListingError
from services.sync.models import Owner, RemoteFile

logger = get_logger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
FILE_FIELDS = "nextPageToken, files(id, name, mimeType, size, modifiedTime, thumbnailLink, webContentLink, webViewLink)"
FOLDER_FIELDS = "nextPageToken, files(id, name)"
PAGE_SIZE = 1000

OWNERS_CACHE_KEY = "owners:all"

# Folder names that hold subjects rather than people
SUBJECT_FOLDER_NAMES = frozenset({
    "wiskunde-a", "wiskunde-b", "rekenen-basis", "rekenen",
    "vo", "wo", "engels", "nederlands", "frans", "duits",
    "natuurkunde", "scheikunde", "biologie", "geschiedenis",
    "aardrijkskunde", "economie", "maatschappijleer",
})


def build_credentials(settings: Settings) -> Credentials:
    """OAuth credentials from the configured refresh token. Raises ConfigurationError."""
    if not settings.drive_configured:
        raise ConfigurationError(
            "Google Drive is not configured: set GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, "
            "GOOGLE_REFRESH_TOKEN and DRIVE_ROOT_FOLDER_ID"
        )

    return Credentials(
        token=None,
        refresh_token=settings.google_refresh_token,
        token_uri=TOKEN_URI,
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
    )


class DriveClient:
    """Paged, read-only queries against the Drive v3 files endpoint.

    googleapiclient is synchronous, so every query runs in the default
    executor with its own service object.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._credentials: Optional[Credentials] = None

    def _get_credentials(self) -> Credentials:
        if self._credentials is None:
            self._credentials = build_credentials(self.settings)
        return self._credentials

    async def query(self, q: str, fields: str, order_by: Optional[str] = None) -> List[Dict[str, Any]]:
        """Run a files().list query and follow nextPageToken to the end."""
        credentials = self._get_credentials()

        def run_query() -> List[Dict[str, Any]]:
            service = build("drive", "v3", credentials=credentials, cache_discovery=False)
            items: List[Dict[str, Any]] = []
            page_token = None
            while True:
                params = {"q": q, "fields": fields, "pageSize": PAGE_SIZE}
                if order_by:
                    params["orderBy"] = order_by
                if page_token:
                    params["pageToken"] = page_token
                result = service.files().list(**params).execute()
                items.extend(result.get("files", []))
                page_token = result.get("nextPageToken")
                if not page_token:
                    return items

        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, run_query)

    async def list_subfolders(self, folder_id: str) -> List[Dict[str, Any]]:
        return await self.query(
            f"'{folder_id}' in parents and mimeType='{FOLDER_MIME_TYPE}' and trashed=false",
            FOLDER_FIELDS,
            order_by="name",
        )


class DriveListingClient:
    """RemoteListingClient over a Drive folder."""

    def __init__(self, client: DriveClient):
        self.client = client

    async def list_files(self, container_id: str) -> List[RemoteFile]:
        """Non-folder files directly inside container_id, newest first."""
        try:
            items = await self.client.query(
                f"'{container_id}' in parents and mimeType!='{FOLDER_MIME_TYPE}' and trashed=false",
                FILE_FIELDS,
                order_by="modifiedTime desc",
            )
        except ConfigurationError:
            raise
        except HttpError as e:
            raise ListingError(container_id, f"Drive API error {e.resp.status}: {e}") from e
        except Exception as e:
            raise ListingError(container_id, str(e)) from e

        files = []
        for item in items:
            version = parse_rfc3339(item.get("modifiedTime"))
            if version is None:
                logger.warning("Skipping file without modifiedTime",
                               container_id=container_id, file_id=item.get("id"))
                continue
            files.append(RemoteFile(
                id=item["id"],
                name=item.get("name", ""),
                version=version,
                size=int(item.get("size") or 0),
                mime_type=item.get("mimeType"),
                thumbnail_url=item.get("thumbnailLink"),
                download_url=item.get("webContentLink"),
                view_url=item.get("webViewLink"),
            ))

        logger.debug("Listed Drive folder", container_id=container_id, count=len(files))
        return files


class DriveOwnerDirectory:
    """OwnerDirectory built from the Drive folder tree, cached for a TTL."""

    def __init__(self, client: DriveClient, cache: CacheService, settings: Settings):
        self.client = client
        self.cache = cache
        self.root_folder_id = settings.drive_root_folder_id
        self.ttl = settings.owner_directory_cache_ttl

    async def list_owners(self) -> List[Owner]:
        cached = await self.cache.get(OWNERS_CACHE_KEY)
        if cached:
            return [Owner.from_dict(item) for item in cached]

        try:
            owners = await self._discover_owners()
        except ConfigurationError:
            raise
        except HttpError as e:
            raise ListingError(self.root_folder_id, f"Drive API error {e.resp.status}: {e}") from e
        except Exception as e:
            raise ListingError(self.root_folder_id, str(e)) from e

        await self.cache.set(
            OWNERS_CACHE_KEY,
            CacheKind.OWNERS,
            [owner.to_dict() for owner in owners],
            ttl=self.ttl,
        )
        logger.info("Discovered owners", count=len(owners))
        return owners

    async def invalidate(self) -> bool:
        return await self.cache.delete(OWNERS_CACHE_KEY)

    async def _discover_owners(self) -> List[Owner]:
        owners: Dict[str, Owner] = {}
        for group in await self.client.list_subfolders(self.root_folder_id):
            for folder in await self.client.list_subfolders(group["id"]):
                name = (folder.get("name") or "").strip()
                if not name or name.lower() in SUBJECT_FOLDER_NAMES:
                    continue
                owners[folder["id"]] = Owner(
                    id=folder["id"],
                    container_id=folder["id"],
                    display_name=name,
                )
        return list(owners.values())
