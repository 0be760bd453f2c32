"""Best-effort browser launch.

Only loopback URLs are ever handed to the OS helper, so the launcher cannot
be used to open arbitrary URLs or commands.
"""

from __future__ import annotations

import webbrowser
from typing import Protocol
from urllib.parse import urlsplit

from enroll.errors import BrowserLaunchFailed

_ALLOWED_HOSTS: frozenset[str] = frozenset({"127.0.0.1", "localhost"})


def is_local_url(url: str) -> bool:
    """True for ``http://127.0.0.1:<port>`` or ``http://localhost:<port>`` only."""
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return False
    return (
        parts.scheme == "http"
        and "@" not in parts.netloc
        and parts.hostname in _ALLOWED_HOSTS
        and port is not None
    )


class Launcher(Protocol):
    def launch(self, url: str) -> bool:
        ...


class BrowserLauncher:
    """Opens the default browser through :mod:`webbrowser`.

    ``launch`` blocks while the OS helper starts; the server runs it in a
    worker thread.
    """

    def launch(self, url: str) -> bool:
        """Open *url* in a new browser tab.

        Raises:
            BrowserLaunchFailed: URL is not loopback, or no browser could be started.
        """
        if not is_local_url(url):
            raise BrowserLaunchFailed("invalid URL for browser: must be localhost")
        try:
            opened = webbrowser.open_new_tab(url)
        except webbrowser.Error as exc:
            raise BrowserLaunchFailed(f"could not open browser: {exc}") from exc
        if not opened:
            raise BrowserLaunchFailed("no runnable browser found")
        return True


class NullBrowserLauncher:
    """Never opens anything. Used with ``--no-browser`` and in tests."""

    def __init__(self) -> None:
        self.urls: list[str] = []

    def launch(self, url: str) -> bool:
        if not is_local_url(url):
            raise BrowserLaunchFailed("invalid URL for browser: must be localhost")
        self.urls.append(url)
        return True
