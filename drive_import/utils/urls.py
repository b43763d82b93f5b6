"""URL helpers for Google Drive sources and import submission."""
from __future__ import annotations

import re
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from ..errors import ValidationError

DRIVE_HOSTS = ("drive.google.com", "docs.google.com")
DROPPED_QUERY_PARAMS = {"usp", "sharing", "edit", "view"}

_FILE_ID_PATTERNS = (
    re.compile(r"/file/d/([a-zA-Z0-9_-]+)"),
    re.compile(r"/document/d/([a-zA-Z0-9_-]+)"),
    re.compile(r"/spreadsheets/d/([a-zA-Z0-9_-]+)"),
    re.compile(r"/presentation/d/([a-zA-Z0-9_-]+)"),
    re.compile(r"[?&]id=([a-zA-Z0-9_-]+)"),
)
_FOLDER_ID_PATTERNS = (
    re.compile(r"/folders/([a-zA-Z0-9_-]+)"),
    re.compile(r"[?&]id=([a-zA-Z0-9_-]+)"),
)


def is_google_drive_url(url: Optional[str]) -> bool:
    if not isinstance(url, str) or not url:
        return False
    host = urlsplit(url).hostname or ""
    return any(host == h or host.endswith("." + h) for h in DRIVE_HOSTS)


def extract_file_id(url: str) -> Optional[str]:
    for pattern in _FILE_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def extract_folder_id(folder_url: str) -> str:
    """
    Folder id of a Google Drive folder URL.

    Raises ValidationError for anything that is not a Drive folder reference.
    """
    if not folder_url or not folder_url.strip():
        raise ValidationError("Folder URL is required")
    if not is_google_drive_url(folder_url.strip()):
        raise ValidationError(f"Invalid Google Drive folder URL: {folder_url}")
    for pattern in _FOLDER_ID_PATTERNS:
        match = pattern.search(folder_url)
        if match:
            return match.group(1)
    raise ValidationError(f"Cannot extract folder id from URL: {folder_url}")


def sanitize_url(url: str) -> str:
    """Drop sharing-related query parameters and the fragment."""
    parts = urlsplit(url)
    params = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key.lower() not in DROPPED_QUERY_PARAMS
    ]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(params), ""))


def optimize_import_url(url: str) -> str:
    """Direct-download form of a Drive link; other URLs are only sanitized."""
    if not url:
        return url
    sanitized = sanitize_url(url)
    if not is_google_drive_url(sanitized):
        return sanitized
    file_id = extract_file_id(sanitized)
    if not file_id:
        return sanitized
    return f"https://drive.google.com/uc?id={file_id}&export=download"


def build_proxy_url(file_id: str, file_name: str, domain: str) -> str:
    """URL in the form DOMAIN/FILE_ID/FILE_NAME."""
    if not file_id:
        raise ValueError("file_id cannot be empty")
    if not file_name:
        raise ValueError("file_name cannot be empty")
    if not domain:
        raise ValueError("domain cannot be empty")
    return f"{domain.rstrip('/')}/{file_id}/{file_name}"
