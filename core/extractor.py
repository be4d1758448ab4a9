"""Turns answer-sheet candidates into JPEG artifacts.

Reading happens in-page through the page surface (drawable read-back, loaded
bitmap redraw, credentialed fetch, anonymous image load); decoding, merging
and recompression happen here with Pillow.
"""

import base64
import io
import re
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional
from urllib.parse import unquote_to_bytes

from PIL import Image, UnidentifiedImageError

import config
from core.locator import Candidate
from services.page_surface import ElementRef, PageSurface
from utils.error_handler import FetchError, PageSurfaceError
from utils.logger import get_logger

logger = get_logger()

_CSS_URL = re.compile(r"""^url\(\s*["']?(.*?)["']?\s*\)$""", re.IGNORECASE)


@dataclass
class Artifact:
    """Encoded JPEG bytes standing for the current answer sheet."""
    data: bytes
    width: int
    height: int
    parts: int = 1
    mime: str = "image/jpeg"
    _b64: Optional[str] = field(default=None, init=False, repr=False, compare=False)

    @property
    def b64(self) -> str:
        if self._b64 is None:
            self._b64 = base64.b64encode(self.data).decode("ascii")
        return self._b64

    @classmethod
    def from_image(cls, image: Image.Image, quality: int, parts: int = 1) -> "Artifact":
        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", quality=quality)
        return cls(data=buffer.getvalue(), width=image.width, height=image.height, parts=parts)


def strip_css_url(value: str) -> str:
    """``url("x")`` -> ``x``; other values pass through trimmed."""
    value = (value or "").strip()
    match = _CSS_URL.match(value)
    return match.group(1) if match else value


def with_cache_buster(address: str, stamp: int) -> str:
    if address.startswith(("data:", "blob:")):
        return address
    base, hash_sep, fragment = address.partition("#")
    joiner = "&" if "?" in base else "?"
    return f"{base}{joiner}_t={stamp}{hash_sep}{fragment}"


def decode_data_url(address: str) -> bytes:
    header, _, payload = address.partition(",")
    if ";base64" in header:
        return base64.b64decode(payload)
    return unquote_to_bytes(payload)


def to_rgb(raw: bytes) -> Image.Image:
    """Decodes any browser-supported raster into an RGB image on a white background.

    Raises:
        ValueError: If the bytes are not a decodable image.
    """
    try:
        image = Image.open(io.BytesIO(raw))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Undecodable image data ({len(raw)} bytes): {e}") from e

    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        image = image.convert("RGBA")
        background = Image.new("RGB", image.size, (255, 255, 255))
        background.paste(image, mask=image.split()[-1])
        return background
    return image.convert("RGB")


def merge_vertically(images: List[Image.Image]) -> Image.Image:
    """Stacks images top to bottom, each scaled to the widest one."""
    if not images:
        raise ValueError("No images to merge")
    target_width = max(max(img.width for img in images), 1)

    scaled = []
    for img in images:
        if img.width and img.width != target_width:
            height = max(1, round(img.height * target_width / img.width))
            img = img.resize((target_width, height), Image.LANCZOS)
        scaled.append(img)

    total_height = max(1, sum(img.height for img in scaled))
    composite = Image.new("RGB", (target_width, total_height), (255, 255, 255))
    y_offset = 0
    for img in scaled:
        composite.paste(img, (0, y_offset))
        y_offset += img.height
    return composite


def compress(artifact: Artifact, max_width: int = config.COMPRESS_MAX_WIDTH,
             quality: int = config.COMPRESS_QUALITY) -> Artifact:
    """Re-encodes at reduced quality, downscaling to ``max_width`` when wider.

    Returns the input unchanged if it cannot be decoded.
    """
    try:
        image = to_rgb(artifact.data)
    except ValueError as e:
        logger.warning(f"Compression skipped: {e}")
        return artifact
    if image.width > max_width:
        height = max(1, round(image.height * max_width / image.width))
        image = image.resize((max_width, height), Image.LANCZOS)
    return Artifact.from_image(image, quality=quality, parts=artifact.parts)


class ImageExtractor:
    """Reads candidate elements into raster bytes, falling back across strategies."""

    def __init__(self, surface: PageSurface, clock: Callable[[], float] = time.time):
        self.surface = surface
        self.clock = clock

    def refetch(self, address: str, origin: Optional[ElementRef] = None) -> Optional[bytes]:
        """Re-fetch ladder for an image address: credentialed fetch, then anonymous image load.

        Both attempts run in the document that owns ``origin`` when it is given.

        Returns None once both attempts failed; callers treat that as retryable.
        """
        address = strip_css_url(address)
        if not address:
            return None
        if address.startswith("data:"):
            try:
                return decode_data_url(address)
            except ValueError as e:
                logger.warning(f"Malformed data URL: {e}")
                return None

        short = address[:80]
        try:
            return self.surface.fetch_bytes(with_cache_buster(address, int(self.clock() * 1000)), origin)
        except FetchError as e:
            logger.info(f"Credentialed fetch of {short} failed, trying anonymous image load: {e}")

        try:
            return self.surface.load_image_anonymous(with_cache_buster(address, int(self.clock() * 1000)), origin)
        except FetchError as e:
            logger.warning(f"Anonymous image load of {short} failed: {e}")
        return None

    def read(self, candidate: Candidate) -> Optional[bytes]:
        """Raw encoded bytes of one candidate, or None when unavailable."""
        element, tag = candidate.element, candidate.tag
        try:
            if tag == "canvas":
                return self.surface.read_pixels(element)

            if tag == "img":
                drawn = self.surface.draw_loaded_image(element)
                if drawn:
                    return drawn
                logger.debug("Loaded bitmap not readable in-page, re-fetching its address.")
                src = self.surface.prop(element, "src") or self.surface.attribute(element, "src")
                return self.refetch(src or "", element)

            if tag == "image":
                href = self.surface.attribute(element, "xlink:href") or self.surface.attribute(element, "href")
                return self.refetch(href, element) if href else None

            background = self.surface.computed_style(element).background_image
            if background and background != "none":
                return self.refetch(background, element)
        except PageSurfaceError as e:
            logger.warning(f"Reading <{tag}> candidate failed: {e}", exc_info=config.DEBUG)
        return None

    def extract(self, candidates: List[Candidate], compress_threshold: int) -> Optional[Artifact]:
        """Builds the cycle's artifact from the selected candidates.

        Parts that are unreadable or too small to be a loaded image are dropped.
        Several parts are merged into one tall composite; the result is
        recompressed when its base64 form exceeds ``compress_threshold``.

        Returns:
            The artifact, or None when no candidate yielded usable data.
        """
        images: List[Image.Image] = []
        for candidate in candidates:
            raw = self.read(candidate)
            if not raw or len(raw) * 4 / 3 < config.ARTIFACT_MIN_LENGTH:
                continue
            try:
                images.append(to_rgb(raw))
            except ValueError as e:
                logger.warning(f"Discarding <{candidate.tag}> candidate: {e}")

        if not images:
            return None

        if len(images) == 1:
            artifact = Artifact.from_image(images[0], quality=config.JPEG_QUALITY)
        else:
            artifact = Artifact.from_image(merge_vertically(images), quality=config.MERGE_QUALITY, parts=len(images))
            logger.info(f"Merged {len(images)} answer-sheet images into {artifact.width}x{artifact.height}")

        if len(artifact.b64) > compress_threshold:
            before = len(artifact.b64)
            artifact = compress(artifact)
            logger.debug(f"Compressed artifact {before} -> {len(artifact.b64)} base64 chars")

        return artifact
