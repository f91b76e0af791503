"""
Utility functions for depot downloads and local persistence
"""

import base64
import json
import os
import re
import tempfile
import zlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Pattern, Tuple

from steam_depot import constants


def rolling_checksum(data: bytes, value: int = 0) -> int:
    """
    Compute the depot chunk checksum of a buffer.

    Two 16-bit accumulators modulo 65521 combined as ``a | (b << 16)``,
    seeded with zero (unlike standard Adler-32, which starts ``a`` at 1).
    Pass the previous result as ``value`` to continue incrementally.

    Args:
        data: Bytes to checksum
        value: Running checksum from earlier data

    Returns:
        32-bit checksum
    """
    return zlib.adler32(data, value) & 0xFFFFFFFF


def checksum_file_range(handle, offset: int, length: int,
                        read_size: int = constants.CHUNK_READ_SIZE) -> Tuple[int, int]:
    """
    Checksum ``length`` bytes of an open binary file starting at ``offset``.

    Returns:
        Tuple of (checksum, bytes actually read)
    """
    handle.seek(offset)
    value = 0
    remaining = length
    read_total = 0
    while remaining > 0:
        block = handle.read(min(read_size, remaining))
        if not block:
            break
        value = rolling_checksum(block, value)
        remaining -= len(block)
        read_total += len(block)
    return value, read_total


def compile_patterns(patterns: Iterable[str]) -> List[Pattern]:
    """Compile skip-list regexes, case-insensitive."""
    return [re.compile(p, re.IGNORECASE) for p in patterns]


def should_skip_file(path: str, patterns: List[Pattern]) -> bool:
    """
    Check a manifest path against the skip list.

    Paths are matched with forward slashes regardless of the manifest's
    separator style.
    """
    normalized = path.replace("\\", "/")
    return any(p.search(normalized) for p in patterns)


def get_readable_size(size_bytes: int) -> Tuple[float, str]:
    """
    Convert bytes to human-readable size.

    Args:
        size_bytes: Size in bytes

    Returns:
        Tuple of (size value, unit string)
    """
    power = 1024
    n = 0
    labels = {0: "B", 1: "KB", 2: "MB", 3: "GB", 4: "TB"}

    size = float(size_bytes)
    while size >= power and n < 4:
        size /= power
        n += 1

    return round(size, 2), labels[n]


def format_size(size_bytes: int) -> str:
    """Format bytes as human-readable string (e.g. "1.5 GB")."""
    size, unit = get_readable_size(size_bytes)
    return f"{size} {unit}"


def ensure_directory(path) -> None:
    """Ensure directory exists, creating it if necessary."""
    Path(path).mkdir(parents=True, exist_ok=True)


def normalize_path(path: str) -> str:
    """
    Normalize path separators to OS native format.

    Depot manifests may use backslashes; leading separators are stripped so
    the result always stays relative to the destination directory.
    """
    normalized = path.replace("\\", "/")
    normalized = normalized.replace("/", os.sep)
    normalized = normalized.lstrip(os.sep)
    return normalized


def atomic_write_json(path, data: Dict[str, Any], indent: Optional[int] = 2) -> None:
    """
    Write JSON so that ``path`` always holds either the old or the new content.

    Data goes to a temporary file in the same directory, is flushed to disk,
    then renamed over ``path``. The temporary file is removed if anything fails.
    """
    path = Path(path)
    ensure_directory(path.parent)
    temp_path = None
    try:
        with tempfile.NamedTemporaryFile("w", delete=False, dir=path.parent,
                                         prefix=f".{path.name}.", suffix=".tmp",
                                         encoding="utf-8") as temp_file:
            temp_path = temp_file.name
            json.dump(data, temp_file, indent=indent)
            temp_file.flush()
            os.fsync(temp_file.fileno())
        os.replace(temp_path, path)
        temp_path = None
    finally:
        if temp_path and os.path.exists(temp_path):
            os.remove(temp_path)


def read_json(path) -> Dict[str, Any]:
    """Read a JSON object from disk."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object in {path}")
    return data


def decode_token_claims(token: str) -> Dict[str, Any]:
    """
    Decode the payload of a JWT without verifying its signature.

    Raises:
        ValueError: If the token is not a decodable JWT
    """
    parts = token.split(".")
    if len(parts) != 3:
        raise ValueError("Token is not a JWT")

    payload = parts[1]
    payload += "=" * (-len(payload) % 4)
    claims = json.loads(base64.urlsafe_b64decode(payload.encode("ascii")))
    if not isinstance(claims, dict):
        raise ValueError("Token payload is not a JSON object")
    return claims


def decode_token_expiry(token: str) -> Optional[datetime]:
    """
    Read the ``exp`` claim of a JWT refresh token.

    Returns:
        Expiry as an aware UTC datetime, or None if the token has no exp claim

    Raises:
        ValueError: If the token is not a decodable JWT
    """
    exp = decode_token_claims(token).get("exp")
    if exp is None:
        return None
    return datetime.fromtimestamp(int(exp), tz=timezone.utc)
