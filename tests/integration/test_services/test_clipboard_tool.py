"""Tests for the wl-clipboard backed tool."""

import asyncio
import shutil

import pytest

from memoriad.errors import ExternalToolError
from memoriad.services.clipboard_tool import WlClipboardTool


class TestWlClipboardTool:
    """Test prerequisite checks and subprocess handling."""

    def test_missing_binary(self, monkeypatch):
        monkeypatch.setattr(shutil, "which", lambda name: None)

        with pytest.raises(ExternalToolError, match="wl-paste"):
            asyncio.run(WlClipboardTool().check_available())

    def test_no_wayland_display(self, monkeypatch):
        monkeypatch.setattr(shutil, "which", lambda name: f"/usr/bin/{name}")
        monkeypatch.delenv("WAYLAND_DISPLAY", raising=False)

        with pytest.raises(ExternalToolError, match="WAYLAND_DISPLAY"):
            asyncio.run(WlClipboardTool().check_available())

    def test_available(self, monkeypatch):
        monkeypatch.setattr(shutil, "which", lambda name: f"/usr/bin/{name}")
        monkeypatch.setenv("WAYLAND_DISPLAY", "wayland-0")

        asyncio.run(WlClipboardTool().check_available())

    def test_run_captures_output(self):
        returncode, stdout, _ = asyncio.run(WlClipboardTool()._run(["sh", "-c", "printf abc"]))

        assert returncode == 0
        assert stdout == b"abc"

    def test_run_timeout(self):
        """A hung process is killed and reported."""
        tool = WlClipboardTool(timeout=0.1)

        with pytest.raises(ExternalToolError, match="timed out"):
            asyncio.run(tool._run(["sleep", "5"]))

    def test_run_missing_executable(self):
        with pytest.raises(ExternalToolError):
            asyncio.run(WlClipboardTool()._run(["memoria-no-such-binary"]))
