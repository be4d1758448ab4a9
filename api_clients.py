"""Attaches to the operator's own browser over the Chrome DevTools Protocol."""

from dataclasses import dataclass
from typing import List, Optional

from playwright.sync_api import Browser, Error as PlaywrightError, Page, Playwright, sync_playwright

import config
from core.profiles import resolve_profile
from services.playwright_surface import PlaywrightPageSurface
from utils.error_handler import BrowserConnectionError
from utils.logger import get_logger
from utils.retry import retry_on_exception

logger = get_logger()


@dataclass
class TabInfo:
    index: int
    title: str
    url: str
    platform: str


class BrowserSession:
    """Owns the Playwright driver and the CDP connection for one CLI run.

    The browser itself belongs to the operator: closing the session detaches
    without closing any tab.
    """

    def __init__(self, cdp_url: str = config.CDP_URL):
        self.cdp_url = cdp_url
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    @retry_on_exception(exceptions=(PlaywrightError,), max_attempts=config.CDP_CONNECT_ATTEMPTS, initial_delay=1.0)
    def _connect(self) -> Browser:
        return self._playwright.chromium.connect_over_cdp(self.cdp_url)

    def connect(self) -> "BrowserSession":
        """Starts the driver and attaches to the browser.

        Raises:
            BrowserConnectionError: If the browser cannot be reached.
        """
        if self._browser is not None:
            return self
        logger.info(f"Connecting to Chrome at {self.cdp_url}...")
        self._playwright = sync_playwright().start()
        try:
            self._browser = self._connect()
        except PlaywrightError as e:
            self.close()
            raise BrowserConnectionError(
                f"Could not attach to Chrome at {self.cdp_url}. "
                "Start it with --remote-debugging-port=9222 and try again."
            ) from e
        logger.info(f"Attached to browser ({len(self.pages())} tab(s) open).")
        return self

    def pages(self) -> List[Page]:
        if self._browser is None:
            raise BrowserConnectionError("Not connected to a browser.")
        return [page for context in self._browser.contexts for page in context.pages if not page.is_closed()]

    def list_tabs(self) -> List[TabInfo]:
        """Open tabs with the platform each one resolves to."""
        tabs = []
        for idx, page in enumerate(self.pages()):
            try:
                title = page.title()
            except PlaywrightError:
                title = ""
            tabs.append(TabInfo(idx, title, page.url, resolve_profile(page.url).id))
        return tabs

    def open_surface(self, index: int) -> PlaywrightPageSurface:
        """Page surface over the tab at ``index``, brought to the front.

        Raises:
            BrowserConnectionError: If no such tab exists.
        """
        pages = self.pages()
        if not 0 <= index < len(pages):
            raise BrowserConnectionError(f"No tab with index {index} ({len(pages)} open).")
        page = pages[index]
        page.bring_to_front()
        logger.info(f"Using tab {index}: {page.url}")
        return PlaywrightPageSurface(page)

    def close(self) -> None:
        if self._browser is not None:
            try:
                self._browser.close()
            except PlaywrightError as e:
                logger.debug(f"Ignoring error while detaching from browser: {e}")
            self._browser = None
        if self._playwright is not None:
            self._playwright.stop()
            self._playwright = None

    def __enter__(self) -> "BrowserSession":
        return self.connect()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
