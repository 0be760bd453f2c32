"""Unit tests for the browser launchers. ``webbrowser`` is always patched."""

from __future__ import annotations

import webbrowser
from unittest.mock import patch

import pytest

from enroll.errors import BrowserLaunchFailed
from enroll.server.browser import BrowserLauncher, NullBrowserLauncher, is_local_url


class TestIsLocalUrl:
    @pytest.mark.parametrize("url", ["http://127.0.0.1:8080", "http://localhost:5000/path"])
    def test_loopback_accepted(self, url: str) -> None:
        assert is_local_url(url)

    @pytest.mark.parametrize(
        "url",
        [
            "https://127.0.0.1:8080",
            "http://127.0.0.1.evil.test:80",
            "http://example.com",
            "file:///etc/passwd",
            "http://localhost",
            "javascript:alert(1)",
            "http://localhost:@evil.example/",
            "http://127.0.0.1:80@evil.example/",
            "http://user:pw@127.0.0.1:8080/",
            "http://localhost:/",
            "http://127.0.0.1:port/",
            "http://127.0.0.1:99999/",
        ],
    )
    def test_everything_else_refused(self, url: str) -> None:
        assert not is_local_url(url)


class TestBrowserLauncher:
    def test_opens_loopback_url(self) -> None:
        with patch("enroll.server.browser.webbrowser.open_new_tab", return_value=True) as mock_open:
            assert BrowserLauncher().launch("http://127.0.0.1:4321") is True
        mock_open.assert_called_once_with("http://127.0.0.1:4321")

    def test_refuses_remote_url_without_touching_os(self) -> None:
        with patch("enroll.server.browser.webbrowser.open_new_tab") as mock_open:
            with pytest.raises(BrowserLaunchFailed, match="must be localhost"):
                BrowserLauncher().launch("https://example.com")
        mock_open.assert_not_called()

    def test_no_browser_available(self) -> None:
        with patch("enroll.server.browser.webbrowser.open_new_tab", return_value=False):
            with pytest.raises(BrowserLaunchFailed, match="no runnable browser"):
                BrowserLauncher().launch("http://127.0.0.1:4321")

    def test_webbrowser_error_wrapped(self) -> None:
        with patch(
            "enroll.server.browser.webbrowser.open_new_tab",
            side_effect=webbrowser.Error("boom"),
        ):
            with pytest.raises(BrowserLaunchFailed, match="could not open browser"):
                BrowserLauncher().launch("http://localhost:4321")


class TestNullBrowserLauncher:
    def test_records_url(self) -> None:
        launcher = NullBrowserLauncher()
        launcher.launch("http://127.0.0.1:4321")
        assert launcher.urls == ["http://127.0.0.1:4321"]

    def test_refuses_remote_url(self) -> None:
        with pytest.raises(BrowserLaunchFailed):
            NullBrowserLauncher().launch("http://example.com")

    def test_refuses_userinfo_url(self) -> None:
        launcher = NullBrowserLauncher()
        with pytest.raises(BrowserLaunchFailed):
            launcher.launch("http://localhost:@evil.example/")
        assert launcher.urls == []
