"""Workflow storage: one directory per workflow id.

Each directory holds exactly one structural trace (``*.jsonl``) and any
number of preview images.
"""
from __future__ import annotations

import base64
import logging
import shutil
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Sequence, Tuple

from retrace.src.errors import PersistenceError
from retrace.src.utils.models import Workflow

logger = logging.getLogger(__name__)

TRACE_SUFFIX = ".jsonl"
IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".webp")


def is_safe_segment(segment: str) -> bool:
    return bool(segment) and ".." not in segment and "/" not in segment and "\\" not in segment


@dataclass
class Foundation:
    """What a session loads for its workflow: the trace text and its previews."""

    workflow_id: str
    trace_jsonl: str = ""
    images: List[str] = field(default_factory=list)
    has_trace: bool = False


class WorkflowStore:
    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def _workflow_dir(self, workflow_id: str) -> Path:
        if not is_safe_segment(workflow_id):
            raise ValueError("Invalid workflow id")
        return self.root / workflow_id

    # ------------------------------------------------------------------
    def create_workflow(
        self,
        trace: Tuple[str, bytes],
        screenshots: Sequence[Tuple[str, bytes]] = (),
    ) -> Workflow:
        """Persist a new workflow and return its identity."""
        trace_name, trace_bytes = trace
        trace_name = Path(trace_name or "").name
        if not trace_name.endswith(TRACE_SUFFIX):
            raise ValueError(f"Structural trace must be a {TRACE_SUFFIX} file")

        image_names: List[str] = []
        for name, _ in screenshots:
            safe = Path(name or "").name
            if not safe.lower().endswith(IMAGE_SUFFIXES):
                raise ValueError(f"Unsupported preview file: {name}")
            image_names.append(safe)

        workflow_id = str(uuid.uuid4())
        directory = self.root / workflow_id
        try:
            directory.mkdir(parents=True, exist_ok=False)
            (directory / trace_name).write_bytes(trace_bytes)
            for safe, (_, data) in zip(image_names, screenshots):
                (directory / safe).write_bytes(data)
        except OSError as exc:
            shutil.rmtree(directory, ignore_errors=True)
            raise PersistenceError(f"Could not write workflow {workflow_id}: {exc}") from exc

        files = (trace_name, *image_names)
        logger.info("[Store] Saved workflow %s (%s files)", workflow_id, len(files))
        return Workflow(id=workflow_id, name=Path(trace_name).stem, files=files)

    def list_workflows(self) -> List[Workflow]:
        if not self.root.exists():
            return []
        workflows: List[Workflow] = []
        try:
            for directory in sorted(p for p in self.root.iterdir() if p.is_dir()):
                files = tuple(sorted(p.name for p in directory.iterdir() if p.is_file()))
                traces = [name for name in files if name.endswith(TRACE_SUFFIX)]
                name = Path(traces[0]).stem if traces else ""
                workflows.append(Workflow(id=directory.name, name=name, files=files))
        except OSError as exc:
            raise PersistenceError(f"Could not list workflows: {exc}") from exc
        return workflows

    def resolve_file(self, workflow_id: str, filename: str) -> Path:
        if not is_safe_segment(workflow_id) or not is_safe_segment(filename):
            raise ValueError("Invalid path")
        path = self.root / workflow_id / filename
        if not path.is_file():
            raise FileNotFoundError(path)
        return path

    def load_foundation(self, workflow_id: str) -> Foundation:
        """Read the trace and previews of ``workflow_id``.

        A missing directory or trace yields ``has_trace=False``; callers decide
        whether that is fatal.
        """
        directory = self._workflow_dir(workflow_id)
        foundation = Foundation(workflow_id=workflow_id)
        if not directory.is_dir():
            return foundation

        try:
            entries = sorted(p for p in directory.iterdir() if p.is_file())
            traces = [p for p in entries if p.name.endswith(TRACE_SUFFIX)]
            if len(traces) > 1:
                logger.warning(
                    "[Store] Workflow %s has %s traces; using %s",
                    workflow_id,
                    len(traces),
                    traces[0].name,
                )
            if traces:
                foundation.trace_jsonl = traces[0].read_text(encoding="utf-8")
                foundation.has_trace = True
            for path in entries:
                if path.suffix.lower() in IMAGE_SUFFIXES:
                    foundation.images.append(base64.b64encode(path.read_bytes()).decode("ascii"))
        except (OSError, UnicodeDecodeError) as exc:
            raise PersistenceError(f"Could not load workflow {workflow_id}: {exc}") from exc
        return foundation
