"""
File resolver collaborator: turns a stored attachment reference into a URL.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional
from urllib.parse import quote, urlencode


class FileResolver:
    def __init__(self, base_url: str, token: str = ""):
        self.base_url = base_url.rstrip("/")
        self.token = token

    def get_file_url(
        self,
        collection: str,
        owner_record: Mapping[str, Any],
        file_ref: Optional[str],
        use_token: bool = False,
    ) -> Optional[str]:
        if not file_ref:
            return None
        url = "/".join([
            self.base_url,
            "api/files",
            quote(collection),
            quote(str(owner_record["id"])),
            quote(file_ref),
        ])
        if use_token and self.token:
            url = f"{url}?{urlencode({'token': self.token})}"
        return url
