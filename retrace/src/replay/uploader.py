"""HTTP client for the workflow store on the orchestration server."""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from retrace.src.errors import PersistenceError
from retrace.src.utils.config import CONFIG
from retrace.src.utils.models import ReferenceTrace


def trace_filename(name: Optional[str], now: Optional[datetime] = None) -> str:
    """``My Flow!`` -> ``my_flow_.jsonl``; unnamed recordings get a timestamp."""
    if name:
        safe = re.sub(r"[^a-z0-9]", "_", name, flags=re.IGNORECASE).lower()
    else:
        stamp = (now or datetime.now(timezone.utc)).isoformat().replace("+00:00", "Z")
        safe = f"session-record-{stamp}"
    return f"{safe}.jsonl"


class WorkflowUploader:
    """Uploads recordings and lists stored workflows."""

    def __init__(self, base_url: Optional[str] = None, timeout: int = 30) -> None:
        self.base_url = (base_url or CONFIG.replay.server_url).rstrip("/")
        self.timeout = timeout

    def upload(self, trace: ReferenceTrace, name: Optional[str] = None) -> Dict[str, Any]:
        files = [
            ("file", (trace_filename(name), trace.to_jsonl().encode("utf-8"), "application/x-jsonlines"))
        ]
        for preview in trace.previews:
            files.append(("screenshots", (preview.filename, preview.data, "image/jpeg")))

        try:
            response = requests.post(f"{self.base_url}/upload", files=files, timeout=self.timeout)
        except requests.RequestException as exc:
            raise PersistenceError(f"Upload failed: {exc}") from exc
        if not response.ok:
            raise PersistenceError(f"Upload failed: {response.status_code} {response.reason}")
        return response.json()

    def list_workflows(self) -> List[Dict[str, Any]]:
        try:
            response = requests.get(f"{self.base_url}/files", timeout=self.timeout)
        except requests.RequestException as exc:
            raise PersistenceError(f"Failed to fetch files: {exc}") from exc
        if not response.ok:
            raise PersistenceError(f"Failed to fetch files: {response.status_code} {response.reason}")
        return list(response.json().get("workflows", []))
