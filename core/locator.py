"""Candidate discovery: which element on the page holds the current answer sheet."""

from dataclasses import dataclass
from typing import List, Optional

import config
from core.profiles import PlatformProfile
from services.page_surface import DocumentContext, ElementRef, Geometry, PageSurface
from utils.error_handler import PageSurfaceError
from utils.logger import get_logger

logger = get_logger()

MEDIA_TAGS = ("img", "canvas", "image")
HEURISTIC_SELECTOR = "img, canvas, image"

# Ranking classes, lower sorts first.
PRIORITY_TRUSTED = -1
PRIORITY_MEDIA = 0
PRIORITY_CONTAINER = 1


@dataclass
class Candidate:
    """An element hypothesised to contain the answer sheet; lives for one scan only."""
    element: ElementRef
    context: DocumentContext
    geometry: Geometry
    reason: str                 # "selector" or "heuristic"
    selector: str
    priority: int
    tag: str
    source: str = ""

    @property
    def area(self) -> float:
        return self.geometry.area


class CandidateLocator:
    """Scans every readable document for answer-sheet candidates, best first."""

    def __init__(
        self,
        surface: PageSurface,
        min_image_size: float = config.MIN_IMAGE_SIZE,
        max_icon_size: float = config.MAX_ICON_SIZE,
        min_answer_size: float = config.MIN_ANSWER_SIZE,
        area_ratio: float = config.AREA_RATIO,
    ):
        self.surface = surface
        self.min_image_size = min_image_size
        self.max_icon_size = max_icon_size
        self.min_answer_size = min_answer_size
        self.area_ratio = area_ratio

    # --- geometry ---

    def _attr_size(self, element: ElementRef) -> Geometry:
        def num(name: str) -> float:
            try:
                return float(self.surface.attribute(element, name) or 0)
            except ValueError:
                return 0.0
        return Geometry(width=num("width"), height=num("height"))

    def measure(self, element: ElementRef, tag: str) -> Optional[Geometry]:
        """Rendered size with the fallbacks vector images need.

        SVG ``<image>`` elements often report a zero rectangle until their
        declared attributes or the enclosing ``<svg>`` are consulted.
        """
        rect = self.surface.measure(element)
        width, height = rect.width, rect.height
        small = lambda: width < self.min_image_size or height < self.min_image_size  # noqa: E731

        if small():
            bbox = self.surface.svg_bbox(element)
            if bbox:
                width, height = max(width, bbox.width), max(height, bbox.height)

        if small() and tag == "image":
            declared = self._attr_size(element)
            width, height = max(width, declared.width), max(height, declared.height)

            parent = self.surface.parent(element)
            if small() and parent is not None and self.surface.tag_name(parent) == "svg":
                svg_rect = self.surface.measure(parent)
                svg_declared = self._attr_size(parent)
                width = max(width, svg_rect.width or svg_declared.width)
                height = max(height, svg_rect.height or svg_declared.height)

        if not width or not height:
            return None
        return Geometry(width=width, height=height, top=rect.top, left=rect.left)

    # --- evaluation ---

    def _source(self, element: ElementRef, tag: str) -> str:
        if tag == "image":
            return self.surface.attribute(element, "xlink:href") or self.surface.attribute(element, "href") or ""
        if tag == "img":
            return self.surface.attribute(element, "src") or ""
        return ""

    def evaluate(self, element: ElementRef, context: DocumentContext, reason: str, selector: str,
                 profile: PlatformProfile) -> Optional[Candidate]:
        """Turns a raw match into a Candidate, or None when it cannot be the answer sheet."""
        tag = self.surface.tag_name(element)
        geometry = self.measure(element, tag)
        if geometry is None:
            return None

        if geometry.width <= self.max_icon_size or geometry.height <= self.max_icon_size:
            return None
        if geometry.width < self.min_image_size and geometry.height < self.min_image_size:
            return None

        style = self.surface.computed_style(element)
        if style.hidden:
            return None

        if tag in MEDIA_TAGS:
            priority = PRIORITY_MEDIA
        elif style.background_image and style.background_image != "none" and "url" in style.background_image:
            priority = PRIORITY_CONTAINER
        else:
            return None

        source = self._source(element, tag)
        if source and any(p in source for p in profile.trusted_source_patterns):
            priority = PRIORITY_TRUSTED

        return Candidate(element=element, context=context, geometry=geometry, reason=reason,
                         selector=selector, priority=priority, tag=tag, source=source)

    def _scan_document(self, context: DocumentContext, profile: PlatformProfile, seen: set) -> List[Candidate]:
        found: List[Candidate] = []
        passes = [(sel, "selector") for sel in profile.image_selectors]
        passes.append((HEURISTIC_SELECTOR, "heuristic"))

        for selector, reason in passes:
            for element in self.surface.find_elements(selector, context):
                try:
                    key = self.surface.element_key(element)
                    if key in seen:
                        continue
                    seen.add(key)
                    candidate = self.evaluate(element, context, reason, selector, profile)
                except PageSurfaceError as e:
                    # Element detached between query and measurement
                    logger.debug(f"({context.label}) skipping element from {selector!r}: {e}")
                    continue
                if candidate:
                    found.append(candidate)
        return found

    def locate(self, profile: PlatformProfile) -> List[Candidate]:
        """Ranked candidates across the main document and readable frames.

        An empty list is a normal outcome: the next answer sheet has not rendered yet.
        """
        seen: set = set()
        combined: List[Candidate] = []
        for context in self.surface.contexts():
            results = self._scan_document(context, profile, seen)
            logger.debug(f"({context.label}) {len(results)} candidate(s)")
            combined.extend(results)

        kept = [c for c in combined
                if c.geometry.width >= self.min_answer_size and c.geometry.height >= self.min_answer_size]
        if len(kept) < len(combined):
            logger.debug(f"Dropped {len(combined) - len(kept)} candidate(s) below {self.min_answer_size}px")

        kept.sort(key=lambda c: (c.priority, c.geometry.top, -c.area))
        if not kept:
            logger.info(f"No answer-sheet candidate found on {profile.id} page.")
        return kept

    def select(self, candidates: List[Candidate], profile: PlatformProfile) -> List[Candidate]:
        """Top candidate plus same-cycle companions within the area ratio, capped per profile."""
        if not candidates:
            return []
        top_area = candidates[0].area
        selected = [c for idx, c in enumerate(candidates)
                    if idx == 0 or (top_area and c.area >= top_area * self.area_ratio)
                    or (not top_area and idx < profile.max_candidates)]
        return selected[:profile.max_candidates]
