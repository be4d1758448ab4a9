"""In-memory PageSurface over a BeautifulSoup document, for tests.

Layout is declared in markup: ``data-w``/``data-h``/``data-top``/``data-left``
give an element's bounding rectangle, ``data-bbox-w``/``data-bbox-h`` its SVG
bounding box, and ``hidden``/``data-hidden`` on it or an ancestor take it out
of layout. Raster reads resolve through the ``images`` map: ``data-pixels`` on
a canvas names its contents, ``data-drawable`` on an img lets its ``src`` be
redrawn in-page. Time is virtual: ``sleep`` advances ``now`` and fires any
page changes scheduled with ``at``.
"""

import io
import random
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

import soupsieve as sv
from bs4 import BeautifulSoup, Tag
from PIL import Image

from services.page_surface import ComputedStyle, DocumentContext, Geometry, PageSurface
from services.scoring_client import ScoringResult
from utils.error_handler import FetchError

ZHIXUE_URL = "https://www.zhixue.com/webmarking/?markingPaperId=p1"
HAOFENSHU_URL = "https://yj.haofenshu.com/mark/#/task?paperId=h9"

_CACHE_BUSTER = re.compile(r"[?&]_t=\d+(?=$|#)")

Handler = Callable[["FakePage", Tag], None]


def make_image_bytes(width: int = 400, height: int = 300, seed: int = 1, fmt: str = "PNG") -> bytes:
    """Noise image; noise keeps encoded sizes realistic and distinct per seed."""
    rng = random.Random(seed)
    image = Image.frombytes("RGB", (width, height), rng.randbytes(width * height * 3))
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


def strip_cache_buster(address: str) -> str:
    return _CACHE_BUSTER.sub("", address)


def _num(element: Tag, name: str) -> float:
    try:
        return float(element.get(name, 0) or 0)
    except ValueError:
        return 0.0


class FakePage(PageSurface):

    def __init__(self, html: str, url: str = "https://www.zhixue.com/marking/?markingPaperId=p1",
                 images: Optional[Dict[str, bytes]] = None):
        self.soup = BeautifulSoup(html, "html.parser")
        self._url = url
        self.images: Dict[str, bytes] = dict(images or {})
        self.anonymous_images: Dict[str, bytes] = {}
        self.frames: List[BeautifulSoup] = []
        self.now = 0.0
        self.sleeps: List[float] = []
        self.hidden = False
        self.visibility_callbacks: List[Callable[[bool], None]] = []
        self.fetch_log: List[Tuple[str, str]] = []
        self.fetch_origins: List[Optional[Tag]] = []
        self.clicks: List[Tag] = []
        self.events: List[Tuple[Tag, str, str, dict]] = []
        self.click_handlers: Dict[str, Handler] = {}
        self.event_handlers: Dict[Tuple[str, str], Handler] = {}
        self.scheduled: List[Tuple[float, Callable[["FakePage"], None]]] = []
        self.active: Optional[Tag] = None

    # --- test helpers ---

    def set_html(self, html: str) -> None:
        self.soup = BeautifulSoup(html, "html.parser")
        self.active = None

    def add_frame(self, html: str) -> None:
        self.frames.append(BeautifulSoup(html, "html.parser"))

    def navigate(self, url: str) -> None:
        self._url = url

    def set_hidden(self, hidden: bool) -> None:
        self.hidden = hidden
        for callback in list(self.visibility_callbacks):
            callback(hidden)

    def at(self, when: float, change: Callable[["FakePage"], None]) -> None:
        self.scheduled.append((when, change))

    def one(self, selector: str) -> Tag:
        return sv.select_one(selector, self.soup)

    def clock(self) -> float:
        return self.now

    def events_of(self, element: Tag) -> List[str]:
        return [event for el, event, _, _ in self.events if el is element]

    # --- Document level ---

    def url(self) -> str:
        return self._url

    def contexts(self) -> List[DocumentContext]:
        result = [DocumentContext(label="main document", handle=None, is_main=True)]
        for idx, frame in enumerate(self.frames):
            result.append(DocumentContext(label=f"frame#{idx}", handle=frame, is_main=False))
        return result

    def _root(self, context: Optional[DocumentContext]):
        if context is None or context.handle is None:
            return self.soup
        return context.handle

    def find_elements(self, selector: str, context: Optional[DocumentContext] = None) -> List[Tag]:
        try:
            return sv.select(selector, self._root(context))
        except sv.SelectorSyntaxError:
            return []

    def find_within(self, element: Tag, selector: str) -> List[Tag]:
        try:
            return sv.select(selector, element)
        except sv.SelectorSyntaxError:
            return []

    def texts(self, selector: str, context: Optional[DocumentContext] = None,
              rendered_only: bool = False) -> List[str]:
        return [self.text(el) for el in self.find_elements(selector, context)
                if not rendered_only or self.is_rendered(el)]

    def body_text(self, context: Optional[DocumentContext] = None) -> str:
        root = self._root(context)
        body = root.body or root
        return body.get_text(" ", strip=True)

    def active_element(self) -> Optional[Tag]:
        return self.active

    def is_hidden(self) -> bool:
        return self.hidden

    def on_visibility_change(self, callback: Callable[[bool], None]) -> None:
        self.visibility_callbacks.append(callback)

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(0.0, seconds)
        due = [item for item in self.scheduled if item[0] <= self.now]
        self.scheduled = [item for item in self.scheduled if item[0] > self.now]
        for _, change in sorted(due, key=lambda item: item[0]):
            change(self)

    # --- Element inspection ---

    def element_key(self, element: Tag) -> int:
        return id(element)

    def tag_name(self, element: Tag) -> str:
        return (element.name or "").lower()

    def attribute(self, element: Tag, name: str) -> Optional[str]:
        value = element.get(name)
        if isinstance(value, list):
            return " ".join(value)
        return value

    def prop(self, element: Tag, name: str) -> Any:
        if name == "checked":
            return element.has_attr("checked")
        if name == "value":
            return element.get("value", "")
        return self.attribute(element, name)

    def text(self, element: Tag) -> str:
        return element.get_text(" ", strip=True)

    def classes(self, element: Tag) -> List[str]:
        return list(element.get("class", []))

    def outer_html(self, element: Tag) -> str:
        return str(element)

    def is_rendered(self, element: Tag) -> bool:
        node = element
        while isinstance(node, Tag) and node.name != "[document]":
            if node.has_attr("hidden") or node.has_attr("data-hidden"):
                return False
            node = node.parent
        return True

    def measure(self, element: Tag) -> Geometry:
        if not self.is_rendered(element):
            return Geometry(0, 0)
        return Geometry(width=_num(element, "data-w"), height=_num(element, "data-h"),
                        top=_num(element, "data-top"), left=_num(element, "data-left"))

    def svg_bbox(self, element: Tag) -> Optional[Geometry]:
        if not element.has_attr("data-bbox-w"):
            return None
        return Geometry(width=_num(element, "data-bbox-w"), height=_num(element, "data-bbox-h"))

    def computed_style(self, element: Tag) -> ComputedStyle:
        declarations = {}
        for part in (element.get("style") or "").split(";"):
            key, sep, value = part.partition(":")
            if sep:
                declarations[key.strip().lower()] = value.strip()
        try:
            opacity = float(declarations.get("opacity", 1))
        except ValueError:
            opacity = 1.0
        return ComputedStyle(
            display=declarations.get("display", "block"),
            visibility=declarations.get("visibility", "visible"),
            opacity=opacity,
            background_image=declarations.get("background-image", "none"),
        )

    def parent(self, element: Tag) -> Optional[Tag]:
        parent = element.parent
        if parent is None or parent.name == "[document]":
            return None
        return parent

    def closest(self, element: Tag, selector: str) -> Optional[Tag]:
        node = element
        while isinstance(node, Tag) and node.name != "[document]":
            if sv.match(selector, node):
                return node
            node = node.parent
        return None

    def next_sibling(self, element: Tag) -> Optional[Tag]:
        return element.find_next_sibling()

    def previous_sibling(self, element: Tag) -> Optional[Tag]:
        return element.find_previous_sibling()

    # --- Raster reads ---

    def read_pixels(self, element: Tag) -> Optional[bytes]:
        if element.has_attr("data-tainted"):
            return None
        return self.images.get(element.get("data-pixels", ""))

    def draw_loaded_image(self, element: Tag) -> Optional[bytes]:
        if not element.has_attr("data-drawable"):
            return None
        return self.images.get(element.get("src", ""))

    def fetch_bytes(self, address: str, origin: Optional[Tag] = None) -> bytes:
        self.fetch_log.append(("fetch", address))
        self.fetch_origins.append(origin)
        data = self.images.get(strip_cache_buster(address))
        if data is None:
            raise FetchError("HTTP 403", address=address)
        return data

    def load_image_anonymous(self, address: str, origin: Optional[Tag] = None) -> bytes:
        self.fetch_log.append(("anonymous", address))
        self.fetch_origins.append(origin)
        data = self.anonymous_images.get(strip_cache_buster(address))
        if data is None:
            raise FetchError("Image load failed", address=address)
        return data

    # --- Interaction ---

    def click(self, element: Tag) -> None:
        self.clicks.append(element)
        if element.name == "input" and element.get("type") == "checkbox":
            if element.has_attr("checked"):
                del element["checked"]
            else:
                element["checked"] = ""
        handler = self.click_handlers.get(element.get("id", ""))
        if handler:
            handler(self, element)

    def focus(self, element: Tag) -> None:
        self.active = element

    def dispatch_event(self, element: Tag, event_type: str, kind: str = "Event",
                       init: Optional[dict] = None) -> None:
        self.events.append((element, event_type, kind, dict(init or {})))
        handler = self.event_handlers.get((element.get("id", ""), event_type))
        if handler:
            handler(self, element)

    def set_native_value(self, element: Tag, value: str) -> None:
        element["value"] = value


class FakeScoringClient:
    """Records calls; returns queued results or raises queued GradingErrors, else the default result."""

    def __init__(self, score: float = 7, max_score: float = 10):
        self.calls: List[Tuple[Any, Any, str]] = []
        self.queue: List[Any] = []
        self.default = ScoringResult(score=score, max_score=max_score, comment="ok")

    def grade(self, artifact, context, strategy: str) -> ScoringResult:
        self.calls.append((artifact, context, strategy))
        if self.queue:
            item = self.queue.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return self.default
