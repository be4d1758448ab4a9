"""Abstract page surface: the only environment-specific seam of the grading engine.

Everything the locator, extractor and score writer do to the host page goes
through this interface, so the algorithms can run against a live browser tab
(see ``services.playwright_surface``) or an in-memory document in tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Hashable, List, Optional

# Opaque handle to one element of the host page; only the surface that
# produced it knows how to use it.
ElementRef = Any


@dataclass(frozen=True)
class Geometry:
    """On-screen rectangle of an element, in CSS pixels."""
    width: float
    height: float
    top: float = 0.0
    left: float = 0.0

    @property
    def area(self) -> float:
        return self.width * self.height


@dataclass(frozen=True)
class ComputedStyle:
    display: str = ""
    visibility: str = ""
    opacity: float = 1.0
    background_image: str = "none"

    @property
    def hidden(self) -> bool:
        return self.display == "none" or self.visibility == "hidden" or self.opacity == 0


@dataclass(frozen=True)
class DocumentContext:
    """A document the engine may inspect: the main page or a readable nested frame."""
    label: str
    handle: Any = None
    is_main: bool = True


class PageSurface(ABC):
    """Operations the grading engine needs from the host page."""

    # --- Document level ---

    @abstractmethod
    def url(self) -> str:
        """Current address of the top-level document."""

    @abstractmethod
    def contexts(self) -> List[DocumentContext]:
        """Main document first, then every nested frame whose content is readable."""

    @abstractmethod
    def find_elements(self, selector: str, context: Optional[DocumentContext] = None) -> List[ElementRef]:
        """All matches of a CSS selector; an unsupported selector yields an empty list."""

    @abstractmethod
    def find_within(self, element: ElementRef, selector: str) -> List[ElementRef]:
        """Descendants of ``element`` matching ``selector``."""

    @abstractmethod
    def texts(self, selector: str, context: Optional[DocumentContext] = None,
              rendered_only: bool = False) -> List[str]:
        """Trimmed text of every match, in document order, read in one pass.

        With ``rendered_only`` elements without a layout box are skipped.
        """

    @abstractmethod
    def body_text(self, context: Optional[DocumentContext] = None) -> str:
        """Rendered text of the document body."""

    @abstractmethod
    def active_element(self) -> Optional[ElementRef]:
        """The focused element of the main document, if any."""

    @abstractmethod
    def is_hidden(self) -> bool:
        """True when the hosting tab is not in the foreground."""

    @abstractmethod
    def on_visibility_change(self, callback: Callable[[bool], None]) -> None:
        """Registers ``callback(hidden)`` for tab visibility changes."""

    @abstractmethod
    def sleep(self, seconds: float) -> None:
        """Suspends the caller while keeping the host page's events flowing."""

    # --- Element inspection ---

    @abstractmethod
    def element_key(self, element: ElementRef) -> Hashable:
        """Stable identity of the underlying element; two handles to one element share it."""

    @abstractmethod
    def tag_name(self, element: ElementRef) -> str:
        """Lower-case tag name (``img``, ``canvas``, ``image`` ...)."""

    @abstractmethod
    def attribute(self, element: ElementRef, name: str) -> Optional[str]:
        pass

    @abstractmethod
    def prop(self, element: ElementRef, name: str) -> Any:
        """A DOM property such as ``value``, ``checked``, ``src``, ``complete``, ``naturalWidth``."""

    @abstractmethod
    def text(self, element: ElementRef) -> str:
        """Trimmed ``innerText`` falling back to ``textContent``."""

    @abstractmethod
    def classes(self, element: ElementRef) -> List[str]:
        pass

    @abstractmethod
    def outer_html(self, element: ElementRef) -> str:
        pass

    @abstractmethod
    def is_rendered(self, element: ElementRef) -> bool:
        """False for elements that take no layout box (``offsetParent === null``)."""

    @abstractmethod
    def measure(self, element: ElementRef) -> Geometry:
        """Bounding client rectangle."""

    @abstractmethod
    def svg_bbox(self, element: ElementRef) -> Optional[Geometry]:
        """SVG ``getBBox()`` for vector elements, None elsewhere or on failure."""

    @abstractmethod
    def computed_style(self, element: ElementRef) -> ComputedStyle:
        pass

    @abstractmethod
    def parent(self, element: ElementRef) -> Optional[ElementRef]:
        pass

    @abstractmethod
    def closest(self, element: ElementRef, selector: str) -> Optional[ElementRef]:
        """Nearest inclusive ancestor matching ``selector``."""

    @abstractmethod
    def next_sibling(self, element: ElementRef) -> Optional[ElementRef]:
        pass

    @abstractmethod
    def previous_sibling(self, element: ElementRef) -> Optional[ElementRef]:
        pass

    # --- Raster reads ---

    @abstractmethod
    def read_pixels(self, element: ElementRef) -> Optional[bytes]:
        """Encoded contents of a drawable surface; None when the surface is tainted."""

    @abstractmethod
    def draw_loaded_image(self, element: ElementRef) -> Optional[bytes]:
        """Re-encodes an already decoded raster image via an offscreen surface.

        Returns None when the image is not loaded yet or the surface is tainted.
        """

    @abstractmethod
    def fetch_bytes(self, address: str, origin: Optional[ElementRef] = None) -> bytes:
        """Credentialed fetch from inside the page. Raises FetchError.

        With ``origin`` the fetch runs in that element's own document, so
        relative addresses inside frames resolve against the frame.
        """

    @abstractmethod
    def load_image_anonymous(self, address: str, origin: Optional[ElementRef] = None) -> bytes:
        """Loads ``address`` into a fresh anonymous-CORS image and reads it back. Raises FetchError.

        ``origin`` selects the document the image is created in, as for ``fetch_bytes``.
        """

    # --- Interaction ---

    @abstractmethod
    def click(self, element: ElementRef) -> None:
        pass

    @abstractmethod
    def focus(self, element: ElementRef) -> None:
        pass

    @abstractmethod
    def dispatch_event(self, element: ElementRef, event_type: str, kind: str = "Event",
                       init: Optional[dict] = None) -> None:
        """Dispatches a bubbling, cancelable DOM event of class ``kind``."""

    @abstractmethod
    def set_native_value(self, element: ElementRef, value: str) -> None:
        """Assigns ``value`` through the platform's own input value setter."""
