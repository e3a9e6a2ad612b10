#!/usr/bin/env python
"""
Tests for platform_utils.py - OS detection and notification commands.
"""

from pathlib import Path
from unittest.mock import patch

import pytest

from loopwarden.platform_utils import (
    NotifierInfo,
    OSType,
    build_notification_command,
    detect_os,
    expand_user_path,
    get_home_dir,
    get_notifier_info,
)


class TestOSDetection:
    """Test OS detection functionality."""

    @patch("loopwarden.platform_utils.platform.system")
    def test_detect_windows(self, mock_system):
        mock_system.return_value = "Windows"
        assert detect_os() == OSType.WINDOWS

    @patch("loopwarden.platform_utils.platform.system")
    def test_detect_macos(self, mock_system):
        mock_system.return_value = "Darwin"
        assert detect_os() == OSType.MACOS

    @patch("loopwarden.platform_utils.platform.system")
    def test_detect_linux(self, mock_system):
        mock_system.return_value = "Linux"
        assert detect_os() == OSType.LINUX

    @patch("loopwarden.platform_utils.platform.system")
    def test_detect_unknown_defaults_to_linux(self, mock_system):
        mock_system.return_value = "FreeBSD"
        assert detect_os() == OSType.LINUX


class TestNotifierInfo:
    """Test notifier lookup per platform."""

    @patch("loopwarden.platform_utils.detect_os", return_value=OSType.LINUX)
    @patch("loopwarden.platform_utils.shutil.which", return_value="/usr/bin/notify-send")
    def test_linux(self, mock_which, mock_os):
        info = get_notifier_info()
        assert info == NotifierInfo(OSType.LINUX, "/usr/bin/notify-send", True)
        mock_which.assert_called_with("notify-send")

    @patch("loopwarden.platform_utils.detect_os", return_value=OSType.MACOS)
    @patch("loopwarden.platform_utils.shutil.which", return_value="/usr/bin/osascript")
    def test_macos(self, mock_which, mock_os):
        assert get_notifier_info().supports_urgency is False

    @patch("loopwarden.platform_utils.detect_os", return_value=OSType.WINDOWS)
    def test_windows_has_no_notifier(self, mock_os):
        assert get_notifier_info().binary is None


class TestNotificationCommand:
    """Test desktop notification argv."""

    @patch("loopwarden.platform_utils.get_notifier_info")
    def test_notify_send(self, mock_info):
        mock_info.return_value = NotifierInfo(OSType.LINUX, "notify-send", True)
        cmd = build_notification_command("Loop paused", "Stuck on config", urgency="critical")
        assert cmd == [
            "notify-send", "--urgency", "critical", "--app-name", "loopwarden",
            "Loop paused", "Stuck on config",
        ]

    @patch("loopwarden.platform_utils.get_notifier_info")
    def test_osascript_escapes_quotes(self, mock_info):
        mock_info.return_value = NotifierInfo(OSType.MACOS, "osascript", False)
        cmd = build_notification_command('Say "hi"', "back\\slash")
        assert cmd[:2] == ["osascript", "-e"]
        assert 'with title "Say \\"hi\\""' in cmd[2]
        assert "back\\\\slash" in cmd[2]

    @patch("loopwarden.platform_utils.get_notifier_info")
    def test_missing_notifier(self, mock_info):
        mock_info.return_value = NotifierInfo(OSType.LINUX, None, True)
        assert build_notification_command("t", "m") is None


class TestPaths:
    """Test home directory helpers."""

    def test_home_from_env(self, monkeypatch, temp_dir):
        monkeypatch.setenv("HOME", str(temp_dir))
        assert get_home_dir() == temp_dir

    def test_expand_user_path(self, monkeypatch, temp_dir):
        monkeypatch.setenv("HOME", str(temp_dir))
        assert expand_user_path("~/.config/gitea/token") == temp_dir / ".config" / "gitea" / "token"

    @pytest.mark.parametrize("path", ["/etc/token", "relative/token"])
    def test_non_home_paths_unchanged(self, path):
        assert expand_user_path(path) == Path(path)
