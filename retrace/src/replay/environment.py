"""Live page adapter used by the action engine and the snapshot capture.

``LiveEnvironment`` is the seam between replay logic and the browser.
``PlaywrightEnvironment`` implements it on an async Playwright page by
evaluating small DOM scripts on element handles, so that the page sees
the same native activations and events a user agent would produce.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Tuple

from playwright.async_api import ElementHandle, Error as PlaywrightError, Page

from retrace.src.errors import ActionError, EnvironmentUnreachable, InvalidTarget


class LiveEnvironment(Protocol):
    async def query(self, selector: str) -> Optional[Any]:
        ...

    async def is_visible(self, element: Any) -> bool:
        ...

    async def tag_name(self, element: Any) -> str:
        ...

    async def scroll_into_view(self, element: Any, block: str = "center") -> bool:
        ...

    async def focus(self, element: Any) -> None:
        ...

    async def click(self, element: Any) -> None:
        ...

    async def select_text(self, element: Any) -> None:
        ...

    async def set_value(self, element: Any, value: str) -> None:
        ...

    async def dispatch(self, element: Any, event_type: str, init: Optional[Dict[str, Any]] = None) -> None:
        ...

    async def list_options(self, element: Any) -> List[Tuple[str, str]]:
        ...

    async def select_index(self, element: Any, index: int) -> None:
        ...

    async def navigate(self, url: str) -> None:
        ...

    async def scroll_by(self, pixels: int) -> None:
        ...

    async def capture_structure(self) -> Dict[str, Any]:
        ...

    async def screenshot(self, quality: int = 50) -> bytes:
        ...


_VISIBLE_JS = "el => !!(el.offsetWidth || el.offsetHeight || el.getClientRects().length)"

_SCROLL_INTO_VIEW_JS = """
(el, block) => {
    if (typeof el.scrollIntoView !== "function") return false;
    el.scrollIntoView({ behavior: "smooth", block: block, inline: "center" });
    return true;
}
"""

_CLICK_JS = """
el => {
    if (typeof el.click === "function") { el.click(); return; }
    el.dispatchEvent(new MouseEvent("click", { view: window, bubbles: true, cancelable: true }));
}
"""

# Goes through the prototype setter so React/Vue value trackers notice the change.
_SET_VALUE_JS = """
(el, value) => {
    const proto = el instanceof HTMLTextAreaElement
        ? HTMLTextAreaElement.prototype
        : HTMLInputElement.prototype;
    const descriptor = Object.getOwnPropertyDescriptor(proto, "value");
    if (descriptor && descriptor.set) {
        descriptor.set.call(el, value);
    } else {
        el.value = value;
    }
}
"""

_DISPATCH_JS = """
(el, [type, init]) => {
    const options = Object.assign({ bubbles: true, cancelable: true }, init || {});
    let event;
    if (type.startsWith("mouse") || type === "click") {
        event = new MouseEvent(type, Object.assign({ view: window }, options));
    } else if (type.startsWith("key")) {
        event = new KeyboardEvent(type, options);
    } else {
        event = new Event(type, options);
    }
    el.dispatchEvent(event);
}
"""

_OPTIONS_JS = "el => Array.from(el.options || []).map(opt => [opt.value, opt.text])"

_SELECT_INDEX_JS = "(el, index) => { el.selectedIndex = index; }"

# Serializes the document in rrweb node shape; stripping happens in Python.
_CAPTURE_JS = """
() => {
    let nextId = 1;
    const serialize = (node) => {
        const id = nextId++;
        switch (node.nodeType) {
            case Node.DOCUMENT_NODE:
                return { type: 0, id, childNodes: Array.from(node.childNodes).map(serialize) };
            case Node.DOCUMENT_TYPE_NODE:
                return { type: 1, id, name: node.name };
            case Node.ELEMENT_NODE: {
                const attributes = {};
                for (const attr of Array.from(node.attributes)) {
                    attributes[attr.name] = attr.value;
                }
                const tag = node.tagName.toLowerCase();
                if (tag === "input" || tag === "textarea" || tag === "select") {
                    attributes.value = node.type === "password" ? "*".repeat(node.value.length) : node.value;
                }
                return {
                    type: 2,
                    id,
                    tagName: tag,
                    attributes,
                    childNodes: Array.from(node.childNodes).map(serialize),
                };
            }
            case Node.TEXT_NODE:
                return { type: 3, id, textContent: node.textContent || "" };
            case Node.CDATA_SECTION_NODE:
                return { type: 4, id, textContent: "" };
            case Node.COMMENT_NODE:
                return { type: 5, id, textContent: node.textContent || "" };
            default:
                return { type: 3, id, textContent: "" };
        }
    };
    return serialize(document);
}
"""

_GONE_MARKERS = (
    "has been closed",
    "Target closed",
    "Target page, context or browser has been closed",
    "Browser has been closed",
    "Connection closed",
)


class PlaywrightEnvironment:
    """LiveEnvironment over a Playwright async ``Page``."""

    def __init__(self, page: Page) -> None:
        self.page = page

    @asynccontextmanager
    async def _guard(self) -> AsyncIterator[None]:
        if self.page.is_closed():
            raise EnvironmentUnreachable("The page under automation has been closed")
        try:
            yield
        except PlaywrightError as exc:
            message = str(exc)
            if any(marker in message for marker in _GONE_MARKERS):
                raise EnvironmentUnreachable(message) from exc
            raise ActionError(message) from exc

    async def query(self, selector: str) -> Optional[ElementHandle]:
        if self.page.is_closed():
            raise EnvironmentUnreachable("The page under automation has been closed")
        try:
            return await self.page.query_selector(selector)
        except PlaywrightError as exc:
            message = str(exc)
            if any(marker in message for marker in _GONE_MARKERS):
                raise EnvironmentUnreachable(message) from exc
            if "selector" in message.lower():
                raise InvalidTarget("", f'Invalid selector "{selector}"') from exc
            # Navigation in flight; the next poll sees the new document.
            return None

    async def is_visible(self, element: ElementHandle) -> bool:
        async with self._guard():
            return bool(await element.evaluate(_VISIBLE_JS))

    async def tag_name(self, element: ElementHandle) -> str:
        async with self._guard():
            return str(await element.evaluate("el => el.tagName")).upper()

    async def scroll_into_view(self, element: ElementHandle, block: str = "center") -> bool:
        async with self._guard():
            return bool(await element.evaluate(_SCROLL_INTO_VIEW_JS, block))

    async def focus(self, element: ElementHandle) -> None:
        async with self._guard():
            await element.evaluate("el => { if (typeof el.focus === 'function') el.focus(); }")

    async def click(self, element: ElementHandle) -> None:
        async with self._guard():
            await element.evaluate(_CLICK_JS)

    async def select_text(self, element: ElementHandle) -> None:
        async with self._guard():
            await element.evaluate("el => { if (typeof el.select === 'function') el.select(); }")

    async def set_value(self, element: ElementHandle, value: str) -> None:
        async with self._guard():
            await element.evaluate(_SET_VALUE_JS, value)

    async def dispatch(
        self,
        element: ElementHandle,
        event_type: str,
        init: Optional[Dict[str, Any]] = None,
    ) -> None:
        async with self._guard():
            await element.evaluate(_DISPATCH_JS, [event_type, init or {}])

    async def list_options(self, element: ElementHandle) -> List[Tuple[str, str]]:
        async with self._guard():
            options = await element.evaluate(_OPTIONS_JS)
        return [(str(value), str(text)) for value, text in options]

    async def select_index(self, element: ElementHandle, index: int) -> None:
        async with self._guard():
            await element.evaluate(_SELECT_INDEX_JS, index)

    async def navigate(self, url: str) -> None:
        async with self._guard():
            await self.page.goto(url, wait_until="domcontentloaded")

    async def scroll_by(self, pixels: int) -> None:
        async with self._guard():
            await self.page.evaluate(
                "(top) => window.scrollBy({ top: top, behavior: 'smooth' })", pixels
            )

    async def capture_structure(self) -> Dict[str, Any]:
        async with self._guard():
            return await self.page.evaluate(_CAPTURE_JS)

    async def screenshot(self, quality: int = 50) -> bytes:
        async with self._guard():
            return await self.page.screenshot(type="jpeg", quality=quality, full_page=False)
