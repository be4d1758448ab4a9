"""PageSurface implementation over a Playwright (sync API) page."""

import base64
from typing import Any, Callable, List, Optional, Union

from playwright.sync_api import Error as PlaywrightError, ElementHandle, Frame, Page

from services.page_surface import ComputedStyle, DocumentContext, Geometry, PageSurface
from utils.error_handler import FetchError, PageSurfaceError
from utils.logger import get_logger

logger = get_logger()

VISIBILITY_BINDING = "__autograderVisibility"

_VISIBILITY_HOOK = f"""
() => {{
  if (window.__autograderVisibilityHooked) return;
  window.__autograderVisibilityHooked = true;
  document.addEventListener('visibilitychange', () => {{
    try {{ window.{VISIBILITY_BINDING}(document.hidden); }} catch (e) {{}}
  }});
}}
"""

_READ_CANVAS = """
(el) => {
  try { return el.toDataURL('image/png').split(',')[1]; } catch (e) { return null; }
}
"""

_DRAW_LOADED_IMAGE = """
(el) => {
  if (!el.complete || !el.naturalWidth) return null;
  try {
    const c = document.createElement('canvas');
    c.width = el.naturalWidth;
    c.height = el.naturalHeight;
    c.getContext('2d').drawImage(el, 0, 0);
    return c.toDataURL('image/png').split(',')[1];
  } catch (e) {
    return null;
  }
}
"""

_FETCH_BYTES = """
async (url) => {
  const res = await fetch(url, { mode: 'cors', credentials: 'include', cache: 'no-cache' });
  if (!res.ok) throw new Error('HTTP ' + res.status);
  const buf = new Uint8Array(await res.arrayBuffer());
  let s = '';
  for (let i = 0; i < buf.length; i += 0x8000) {
    s += String.fromCharCode.apply(null, buf.subarray(i, i + 0x8000));
  }
  return btoa(s);
}
"""

_LOAD_IMAGE_ANONYMOUS = """
(url) => new Promise((resolve, reject) => {
  const img = new Image();
  img.crossOrigin = 'anonymous';
  img.onload = () => {
    try {
      const c = document.createElement('canvas');
      c.width = img.naturalWidth || img.width;
      c.height = img.naturalHeight || img.height;
      c.getContext('2d').drawImage(img, 0, 0);
      resolve(c.toDataURL('image/png').split(',')[1]);
    } catch (e) {
      reject(e);
    }
  };
  img.onerror = () => reject(new Error('Image load failed'));
  img.src = url;
})
"""

_ELEMENT_KEY = """
(el) => {
  const w = el.ownerDocument.defaultView || window;
  if (!w.__autograderIds) {
    w.__autograderIds = new WeakMap();
    w.__autograderNextId = 1;
    w.__autograderPrefix = Math.random().toString(36).slice(2);
  }
  if (!w.__autograderIds.has(el)) w.__autograderIds.set(el, w.__autograderNextId++);
  return w.__autograderPrefix + ":" + w.__autograderIds.get(el);
}
"""

_TEXTS = """
(els, renderedOnly) => els
  .filter((el) => !renderedOnly || (el.offsetParent !== undefined ? el.offsetParent !== null : el.getClientRects().length > 0))
  .map((el) => (el.innerText || el.textContent || '').trim())
"""

_SET_NATIVE_VALUE = """
(el, value) => {
  const proto = el instanceof HTMLTextAreaElement ? HTMLTextAreaElement.prototype : HTMLInputElement.prototype;
  const desc = Object.getOwnPropertyDescriptor(proto, 'value');
  if (desc && desc.set) { desc.set.call(el, value); } else { el.value = value; }
}
"""

_DISPATCH = """
(el, [type, kind, init]) => {
  const opts = Object.assign({ bubbles: true, cancelable: true }, init || {});
  let ev;
  if (kind === 'MouseEvent') ev = new MouseEvent(type, Object.assign({ view: window }, opts));
  else if (kind === 'KeyboardEvent') ev = new KeyboardEvent(type, opts);
  else ev = new Event(type, opts);
  el.dispatchEvent(ev);
}
"""


class PlaywrightPageSurface(PageSurface):
    """Drives one browser tab. All calls happen on the thread that owns the Playwright instance."""

    def __init__(self, page: Page):
        self.page = page
        self._visibility_callbacks: List[Callable[[bool], None]] = []
        self._visibility_hooked = False

    # --- helpers ---

    def _eval(self, element: ElementHandle, script: str, arg: Any = None) -> Any:
        try:
            if arg is None:
                return element.evaluate(script)
            return element.evaluate(script, arg)
        except PlaywrightError as e:
            raise PageSurfaceError(f"In-page evaluation failed: {e}") from e

    def _frame(self, context: Optional[DocumentContext]) -> Frame:
        if context is None or context.handle is None:
            return self.page.main_frame
        return context.handle

    # --- Document level ---

    def url(self) -> str:
        return self.page.url

    def contexts(self) -> List[DocumentContext]:
        result = [DocumentContext(label="main document", handle=self.page.main_frame, is_main=True)]
        for idx, frame in enumerate(self.page.frames):
            if frame == self.page.main_frame:
                continue
            try:
                frame.evaluate("() => document.readyState")
            except PlaywrightError as e:
                logger.debug(f"Frame #{idx} ({frame.url[:80]}) not readable: {e}")
                continue
            result.append(DocumentContext(label=f"frame#{frame.name or idx}", handle=frame, is_main=False))
        return result

    def find_elements(self, selector: str, context: Optional[DocumentContext] = None) -> List[ElementHandle]:
        try:
            return self._frame(context).query_selector_all(selector)
        except PlaywrightError as e:
            logger.debug(f"Selector {selector!r} unusable: {e}")
            return []

    def find_within(self, element: ElementHandle, selector: str) -> List[ElementHandle]:
        try:
            return element.query_selector_all(selector)
        except PlaywrightError:
            return []

    def texts(self, selector: str, context: Optional[DocumentContext] = None,
              rendered_only: bool = False) -> List[str]:
        try:
            return self._frame(context).eval_on_selector_all(selector, _TEXTS, rendered_only)
        except PlaywrightError as e:
            logger.debug(f"Selector {selector!r} unusable: {e}")
            return []

    def body_text(self, context: Optional[DocumentContext] = None) -> str:
        try:
            return self._frame(context).evaluate("() => document.body ? document.body.innerText : ''") or ""
        except PlaywrightError:
            return ""

    def active_element(self) -> Optional[ElementHandle]:
        try:
            handle = self.page.evaluate_handle("() => document.activeElement")
        except PlaywrightError as e:
            # A navigation mid-write destroys the execution context.
            raise PageSurfaceError(f"Reading the focused element failed: {e}") from e
        return handle.as_element()

    def is_hidden(self) -> bool:
        try:
            return bool(self.page.evaluate("() => document.hidden"))
        except PlaywrightError:
            return False

    def on_visibility_change(self, callback: Callable[[bool], None]) -> None:
        self._visibility_callbacks.append(callback)
        if self._visibility_hooked:
            return
        self.page.expose_function(VISIBILITY_BINDING, self._visibility_changed)
        self.page.add_init_script(f"({_VISIBILITY_HOOK})()")
        self.page.evaluate(_VISIBILITY_HOOK)
        self._visibility_hooked = True

    def _visibility_changed(self, hidden: bool) -> None:
        for callback in list(self._visibility_callbacks):
            callback(bool(hidden))

    def sleep(self, seconds: float) -> None:
        # wait_for_timeout keeps dispatching page events (visibility bindings) while waiting
        self.page.wait_for_timeout(max(0.0, seconds) * 1000)

    # --- Element inspection ---

    def element_key(self, element: ElementHandle) -> str:
        # WeakMap ids avoid writing marker attributes into the host page's DOM
        return self._eval(element, _ELEMENT_KEY)

    def tag_name(self, element: ElementHandle) -> str:
        return (self._eval(element, "(el) => el.tagName || ''") or "").lower()

    def attribute(self, element: ElementHandle, name: str) -> Optional[str]:
        try:
            return element.get_attribute(name)
        except PlaywrightError:
            return None

    def prop(self, element: ElementHandle, name: str) -> Any:
        return self._eval(element, "(el, name) => el[name]", name)

    def text(self, element: ElementHandle) -> str:
        return (self._eval(element, "(el) => (el.innerText || el.textContent || '').trim()") or "")

    def classes(self, element: ElementHandle) -> List[str]:
        return self._eval(element, "(el) => Array.from(el.classList || [])") or []

    def outer_html(self, element: ElementHandle) -> str:
        return self._eval(element, "(el) => el.outerHTML || ''") or ""

    def is_rendered(self, element: ElementHandle) -> bool:
        # SVG children have no offsetParent; fall back to client rects for them
        return bool(self._eval(
            element,
            "(el) => el.offsetParent !== undefined ? el.offsetParent !== null : el.getClientRects().length > 0"
        ))

    def measure(self, element: ElementHandle) -> Geometry:
        rect = self._eval(element, "(el) => { const r = el.getBoundingClientRect();"
                                   " return {w: r.width, h: r.height, t: r.top, l: r.left}; }")
        return Geometry(width=rect["w"], height=rect["h"], top=rect["t"], left=rect["l"])

    def svg_bbox(self, element: ElementHandle) -> Optional[Geometry]:
        box = self._eval(element, "(el) => { if (typeof el.getBBox !== 'function') return null;"
                                  " try { const b = el.getBBox(); return {w: b.width, h: b.height}; }"
                                  " catch (e) { return null; } }")
        if not box:
            return None
        return Geometry(width=box["w"] or 0, height=box["h"] or 0)

    def computed_style(self, element: ElementHandle) -> ComputedStyle:
        style = self._eval(element, "(el) => { const s = (el.ownerDocument.defaultView || window).getComputedStyle(el);"
                                    " return {d: s.display, v: s.visibility, o: s.opacity, b: s.backgroundImage}; }")
        try:
            opacity = float(style["o"] or 1)
        except (TypeError, ValueError):
            opacity = 1.0
        return ComputedStyle(display=style["d"] or "", visibility=style["v"] or "",
                             opacity=opacity, background_image=style["b"] or "none")

    def parent(self, element: ElementHandle) -> Optional[ElementHandle]:
        return self._eval_element(element, "(el) => el.parentElement")

    def closest(self, element: ElementHandle, selector: str) -> Optional[ElementHandle]:
        try:
            handle = element.evaluate_handle("(el, sel) => el.closest(sel)", selector)
        except PlaywrightError:
            return None
        return handle.as_element()

    def next_sibling(self, element: ElementHandle) -> Optional[ElementHandle]:
        return self._eval_element(element, "(el) => el.nextElementSibling")

    def previous_sibling(self, element: ElementHandle) -> Optional[ElementHandle]:
        return self._eval_element(element, "(el) => el.previousElementSibling")

    def _eval_element(self, element: ElementHandle, script: str) -> Optional[ElementHandle]:
        try:
            return element.evaluate_handle(script).as_element()
        except PlaywrightError as e:
            raise PageSurfaceError(f"In-page evaluation failed: {e}") from e

    # --- Raster reads ---

    def read_pixels(self, element: ElementHandle) -> Optional[bytes]:
        data = self._eval(element, _READ_CANVAS)
        if not data:
            logger.warning("Canvas read-back failed (probably tainted by a cross-origin image).")
            return None
        return base64.b64decode(data)

    def draw_loaded_image(self, element: ElementHandle) -> Optional[bytes]:
        data = self._eval(element, _DRAW_LOADED_IMAGE)
        return base64.b64decode(data) if data else None

    def _document_of(self, origin: Optional[ElementHandle]) -> Union[Page, Frame]:
        if origin is None:
            return self.page
        try:
            return origin.owner_frame() or self.page
        except PlaywrightError:
            return self.page

    def fetch_bytes(self, address: str, origin: Optional[ElementHandle] = None) -> bytes:
        try:
            data = self._document_of(origin).evaluate(_FETCH_BYTES, address)
        except PlaywrightError as e:
            raise FetchError(f"Credentialed fetch failed: {e}", address=address) from e
        return base64.b64decode(data)

    def load_image_anonymous(self, address: str, origin: Optional[ElementHandle] = None) -> bytes:
        try:
            data = self._document_of(origin).evaluate(_LOAD_IMAGE_ANONYMOUS, address)
        except PlaywrightError as e:
            raise FetchError(f"Anonymous image load failed: {e}", address=address) from e
        return base64.b64decode(data)

    # --- Interaction ---

    def click(self, element: ElementHandle) -> None:
        self._eval(element, "(el) => { if (typeof el.click === 'function') el.click();"
                            " else el.dispatchEvent(new MouseEvent('click', {bubbles: true, cancelable: true, view: window})); }")

    def focus(self, element: ElementHandle) -> None:
        self._eval(element, "(el) => { if (el.focus) el.focus(); }")

    def dispatch_event(self, element: ElementHandle, event_type: str, kind: str = "Event",
                       init: Optional[dict] = None) -> None:
        self._eval(element, _DISPATCH, [event_type, kind, init or {}])

    def set_native_value(self, element: ElementHandle, value: str) -> None:
        self._eval(element, _SET_NATIVE_VALUE, str(value))

    def __repr__(self) -> str:
        return f"PlaywrightPageSurface(url={self.page.url[:60]!r})"
