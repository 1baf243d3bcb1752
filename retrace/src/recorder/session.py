"""
Recording session

One RecordingSession per page: start() injects the rrweb recorder and begins
taking periodic previews, stop() tears both down and hands back an immutable
ReferenceTrace. Events are filtered and stripped as they arrive.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from playwright.async_api import Error as PlaywrightError

from retrace.src.recorder.compactor import should_keep, simplify_event
from retrace.src.recorder.preview import downscale_preview
from retrace.src.utils.config import RecorderConfig
from retrace.src.utils.models import CaptureEvent, PreviewImage, ReferenceTrace

logger = logging.getLogger(__name__)

BINDING_NAME = "__retraceEmit"

_START_JS = """
(binding) => {
    if (window.__retraceStop) return true;
    if (!window.rrweb || !window.rrweb.record) return false;
    window.__retraceStop = window.rrweb.record({
        emit(event) { window[binding](event); },
        sampling: { mousemove: false, mouseInteraction: true, scroll: 150, media: 800, input: "last" },
        blockClass: "no-record",
        maskInputOptions: { password: true },
        inlineStylesheet: false,
        inlineImages: false,
        collectFonts: false,
        slimDOMOptions: { script: true, comment: true, headFavicon: true },
    });
    return true;
}
"""

_STOP_JS = """
() => {
    if (window.__retraceStop) {
        window.__retraceStop();
        window.__retraceStop = undefined;
    }
}
"""


class RecordingStatus(str, Enum):
    STARTED = "started"
    ALREADY_RECORDING = "already_recording"
    STOPPED = "stopped"
    NOT_RECORDING = "not_recording"


class RecordingSession:
    """Records one demonstration on a Playwright page."""

    def __init__(self, page: Any, config: Optional[RecorderConfig] = None) -> None:
        self.page = page
        self.config = config or RecorderConfig()
        self._events: List[CaptureEvent] = []
        self._previews: List[PreviewImage] = []
        self._recording = False
        self._binding_installed = False
        self._preview_task: Optional[asyncio.Task] = None

    @property
    def is_recording(self) -> bool:
        return self._recording

    def status(self) -> Dict[str, Any]:
        return {"isRecording": self._recording, "events": len(self._events)}

    async def start(self) -> RecordingStatus:
        if self._recording:
            return RecordingStatus.ALREADY_RECORDING

        self._events = []
        self._previews = []
        if not self._binding_installed:
            await self.page.expose_binding(BINDING_NAME, self._on_emit)
            self._binding_installed = True
        # Set before injecting: the initial Meta/FullSnapshot events arrive during record().
        self._recording = True
        try:
            await self.page.add_script_tag(url=self.config.rrweb_script_url)
            started = await self.page.evaluate(_START_JS, BINDING_NAME)
        except PlaywrightError:
            self._recording = False
            raise
        if not started:
            self._recording = False
            raise RuntimeError("rrweb recorder did not load on the page")

        self._preview_task = asyncio.create_task(self._preview_loop())
        logger.info("[Recorder] Recording started")
        return RecordingStatus.STARTED

    async def stop(self) -> Tuple[RecordingStatus, Optional[ReferenceTrace]]:
        if not self._recording:
            return RecordingStatus.NOT_RECORDING, None

        self._recording = False
        if self._preview_task is not None:
            self._preview_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._preview_task
            self._preview_task = None
        try:
            await self.page.evaluate(_STOP_JS)
        except PlaywrightError as exc:
            logger.warning("[Recorder] Could not stop recorder cleanly: %s", exc)

        trace = ReferenceTrace(events=tuple(self._events), previews=tuple(self._previews))
        logger.info(
            "[Recorder] Recording stopped: %s events, %s previews",
            len(trace.events),
            len(trace.previews),
        )
        if not trace.events:
            logger.warning("[Recorder] No events to save.")
        return RecordingStatus.STOPPED, trace

    def _on_emit(self, _source: Any, event: Any) -> None:
        if not self._recording or not isinstance(event, dict):
            return
        if should_keep(event):
            self._events.append(CaptureEvent.from_record(simplify_event(event)))

    async def _preview_loop(self) -> None:
        interval = max(self.config.preview_interval_ms, 0) / 1000.0
        while self._recording:
            try:
                raw = await self.page.screenshot(type="jpeg", quality=self.config.preview_quality)
            except PlaywrightError as exc:
                logger.warning("[Recorder] Preview capture stopped: %s", exc)
                return
            self._previews.append(
                PreviewImage(
                    timestamp=int(time.time() * 1000),
                    data=downscale_preview(
                        raw,
                        max_width=self.config.preview_max_width,
                        quality=self.config.preview_quality,
                    ),
                )
            )
            await asyncio.sleep(interval)
