"""
Data models for sessions, tickets, depot manifests, chunks and download markers
"""

import base64
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Dict, List, Optional, Tuple

from steam_depot import constants


class EResult(IntEnum):
    """Subset of the platform's result codes used by this package."""
    OK = 1
    FAIL = 2
    NO_CONNECTION = 3
    INVALID_PASSWORD = 5
    LOGGED_IN_ELSEWHERE = 6
    INVALID_PARAM = 8
    BUSY = 10
    INVALID_STATE = 11
    ACCESS_DENIED = 15
    TIMEOUT = 16
    BANNED = 17
    ACCOUNT_NOT_FOUND = 18
    SERVICE_UNAVAILABLE = 20
    NOT_LOGGED_ON = 21
    EXPIRED = 27
    TRY_ANOTHER_CM = 48
    INVALID_LOGIN_AUTH_CODE = 65
    RATE_LIMIT_EXCEEDED = 84
    ACCOUNT_LOGIN_DENIED_NEED_TWO_FACTOR = 85
    TWO_FACTOR_CODE_MISMATCH = 88


def describe_result(code: int) -> str:
    """Return a readable name for a result code, tolerating unknown values."""
    try:
        return EResult(code).name
    except ValueError:
        return f"EResult({code})"


@dataclass
class Session:
    """
    A saved login session.

    Attributes:
        username: Account name the refresh token belongs to
        refresh_token: Long-lived token exchanged for platform access
    """
    username: str
    refresh_token: str

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Session":
        """Create a Session from its on-disk JSON form."""
        return cls(username=data["username"], refresh_token=data["refreshToken"])

    def to_json(self) -> Dict[str, Any]:
        return {"username": self.username, "refreshToken": self.refresh_token}


@dataclass
class LoginAttempt:
    """
    One token login attempt; exists only while a login call is running.

    Attributes:
        attempt_number: 1-based attempt counter
        deadline: time.monotonic() value after which the attempt has timed out
    """
    attempt_number: int
    deadline: float

    @classmethod
    def start(cls, attempt_number: int, timeout: float) -> "LoginAttempt":
        return cls(attempt_number=attempt_number, deadline=time.monotonic() + timeout)

    def remaining(self) -> float:
        return max(0.0, self.deadline - time.monotonic())

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.deadline


@dataclass
class AppTicket:
    """An encrypted app ticket. Never persisted."""
    app_id: int
    data: bytes

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


@dataclass(frozen=True)
class DepotChunk:
    """
    A byte range of a depot file.

    Attributes:
        chunk_id: Hex content hash identifying the chunk on the CDN
        offset: Offset of the chunk within the uncompressed file
        uncompressed_length: Size of the chunk once decoded
        checksum: Rolling checksum of the uncompressed chunk data
        compressed_length: Size of the chunk as stored on the CDN
    """
    chunk_id: str
    offset: int
    uncompressed_length: int
    checksum: int
    compressed_length: int = 0

    @classmethod
    def from_json(cls, chunk_json: Dict[str, Any]) -> "DepotChunk":
        """Create a DepotChunk from JSON data."""
        return cls(
            chunk_id=chunk_json.get("id", ""),
            offset=int(chunk_json.get("offset", 0)),
            uncompressed_length=int(chunk_json.get("uncompressedLength", 0)),
            checksum=int(chunk_json.get("checksum", 0)),
            compressed_length=int(chunk_json.get("compressedLength", 0)),
        )

    @property
    def end(self) -> int:
        return self.offset + self.uncompressed_length


@dataclass(frozen=True)
class DepotFile:
    """
    A file or directory entry of a depot manifest.

    Attributes:
        path: Path relative to the depot root (either separator style)
        total_size: Size of the materialized file in bytes
        chunks: Chunks that make up the file, in manifest order
        flags: Depot file flags bitmask
    """
    path: str
    total_size: int
    chunks: Tuple[DepotChunk, ...] = ()
    flags: int = 0

    @classmethod
    def from_json(cls, file_json: Dict[str, Any]) -> "DepotFile":
        """Create a DepotFile from JSON data."""
        flags = int(file_json.get("flags", 0))
        if file_json.get("directory"):
            flags |= constants.DEPOT_FLAG_DIRECTORY
        return cls(
            path=file_json.get("path", ""),
            total_size=int(file_json.get("totalSize", 0)),
            chunks=tuple(DepotChunk.from_json(c) for c in file_json.get("chunks", [])),
            flags=flags,
        )

    @property
    def is_directory(self) -> bool:
        return bool(self.flags & constants.DEPOT_FLAG_DIRECTORY)


@dataclass(frozen=True)
class DepotManifest:
    """
    Desired end state of one depot version. Immutable.

    Attributes:
        depot_id: Depot this manifest describes
        manifest_id: Manifest (gid) identifier
        files: File and directory entries
    """
    depot_id: int
    manifest_id: int
    files: Tuple[DepotFile, ...] = ()

    @classmethod
    def from_json(cls, manifest_json: Dict[str, Any]) -> "DepotManifest":
        """Create a DepotManifest from JSON data."""
        return cls(
            depot_id=int(manifest_json["depotId"]),
            manifest_id=int(manifest_json["manifestId"]),
            files=tuple(DepotFile.from_json(f) for f in manifest_json.get("files", [])),
        )

    @property
    def total_size(self) -> int:
        return sum(f.total_size for f in self.files if not f.is_directory)


@dataclass
class DownloadMarker:
    """
    Records that a target directory materializes a manifest.

    A marker whose manifest_id equals the currently resolved manifest means the
    directory is already up to date.
    """
    app_id: int
    depot_id: int
    manifest_id: int
    target_os: str
    total_bytes: int
    total_files: int
    downloaded_at: str = ""

    @classmethod
    def create(cls, app_id: int, depot_id: int, manifest_id: int, target_os: str,
               total_bytes: int, total_files: int) -> "DownloadMarker":
        return cls(
            app_id=app_id,
            depot_id=depot_id,
            manifest_id=manifest_id,
            target_os=target_os,
            total_bytes=total_bytes,
            total_files=total_files,
            downloaded_at=datetime.now(timezone.utc).isoformat(),
        )

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "DownloadMarker":
        """Create a DownloadMarker from its on-disk JSON form."""
        return cls(
            app_id=int(data["appId"]),
            depot_id=int(data["depotId"]),
            manifest_id=int(data["manifestId"]),
            target_os=data.get("targetOs", ""),
            total_bytes=int(data.get("totalBytes", 0)),
            total_files=int(data.get("totalFiles", 0)),
            downloaded_at=data.get("downloadedAt", ""),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "appId": self.app_id,
            "depotId": self.depot_id,
            "manifestId": self.manifest_id,
            "targetOs": self.target_os,
            "totalBytes": self.total_bytes,
            "totalFiles": self.total_files,
            "downloadedAt": self.downloaded_at,
        }


@dataclass
class ResolvedManifest:
    """Depot, manifest and decryption key resolved for an app and target OS."""
    app_id: int
    depot_id: int
    manifest_id: int
    depot_key: bytes
    target_os: str


@dataclass
class CDNServer:
    """
    A CDN edge server candidate.

    Attributes:
        host: Hostname used for auth token requests
        port: TCP port
        https: Whether to use TLS
        vhost: Virtual host to put in request URLs (falls back to host)
        type: Server type as reported by the platform (e.g. "CDN", "SteamCache")
    """
    host: str
    port: int = 443
    https: bool = True
    vhost: str = ""
    type: str = "CDN"

    @property
    def base_url(self) -> str:
        scheme = "https" if self.https else "http"
        default_port = 443 if self.https else 80
        host = self.vhost or self.host
        if self.port and self.port != default_port:
            return f"{scheme}://{host}:{self.port}"
        return f"{scheme}://{host}"


@dataclass
class CDNSelection:
    """An edge server plus the short-lived codes needed to fetch from it."""
    server: CDNServer
    request_code: int
    auth_token: Optional[str] = None


@dataclass
class DownloadProgress:
    """Progress snapshot emitted while a depot downloads."""
    files_done: int
    files_total: int
    bytes_done: int
    bytes_total: int

    @property
    def percent(self) -> float:
        if self.bytes_total <= 0:
            return 100.0
        return self.bytes_done / self.bytes_total * 100


@dataclass
class FileFailure:
    """A depot file that could not be materialized."""
    path: str
    reason: str


@dataclass
class DownloadResult:
    """
    Outcome of a depot download.

    Attributes:
        total_files: Files in the work list (skip list and directories excluded)
        total_bytes: Bytes in the work list
        skipped_by_filter: Files matched by the skip list
        skipped_existing: Files already present and valid
        repaired_files: Files fixed by re-downloading only invalid chunks
        downloaded_files: Files downloaded in full
        chunks_downloaded: Chunk fetches that succeeded
        failures: Files that could not be materialized
    """
    total_files: int = 0
    total_bytes: int = 0
    skipped_by_filter: int = 0
    skipped_existing: int = 0
    repaired_files: int = 0
    downloaded_files: int = 0
    chunks_downloaded: int = 0
    bytes_processed: int = 0
    failures: List[FileFailure] = field(default_factory=list)
