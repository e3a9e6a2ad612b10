"""
Platform Utilities
==================

OS detection and the platform-specific commands loopwarden shells out to:
desktop notifications for escalations and the per-user provider data
directories used to locate session transcripts.
"""

import os
import platform
import shutil
from enum import Enum
from pathlib import Path
from typing import NamedTuple, Optional


class OSType(Enum):
    """Supported operating system types."""
    WINDOWS = "windows"
    MACOS = "macos"
    LINUX = "linux"


class NotifierInfo(NamedTuple):
    """How desktop notifications are delivered on this platform."""
    os_type: OSType
    binary: Optional[str]           # notify-send, osascript, or None
    supports_urgency: bool          # notify-send takes --urgency


def detect_os() -> OSType:
    """
    Detect the current operating system.

    Returns:
        OSType enum value for the current OS
    """
    system = platform.system().lower()
    if system == "windows":
        return OSType.WINDOWS
    elif system == "darwin":
        return OSType.MACOS
    else:
        return OSType.LINUX


def get_notifier_info() -> NotifierInfo:
    """
    Find the desktop notification tool for the current platform.

    Linux uses notify-send, macOS uses osascript. Windows has no
    dependency-free CLI notifier, so notifications are unavailable there.
    """
    os_type = detect_os()

    if os_type == OSType.LINUX:
        return NotifierInfo(os_type, shutil.which("notify-send"), True)
    elif os_type == OSType.MACOS:
        return NotifierInfo(os_type, shutil.which("osascript"), False)
    return NotifierInfo(os_type, None, False)


def build_notification_command(
    title: str,
    message: str,
    urgency: str = "normal",
    app_name: str = "loopwarden",
) -> Optional[list[str]]:
    """
    Build the argv for a desktop notification.

    Returns:
        Command list, or None when no notifier is installed.
    """
    info = get_notifier_info()
    if info.binary is None:
        return None

    if info.os_type == OSType.LINUX:
        return [
            info.binary,
            "--urgency", urgency,
            "--app-name", app_name,
            title,
            message,
        ]

    # osascript: quote-escape for AppleScript string literals
    safe_title = title.replace("\\", "\\\\").replace('"', '\\"')
    safe_message = message.replace("\\", "\\\\").replace('"', '\\"')
    script = f'display notification "{safe_message}" with title "{safe_title}"'
    return [info.binary, "-e", script]


def get_home_dir() -> Path:
    """Home directory, honouring HOME so tests can redirect it."""
    home = os.environ.get("HOME") or os.environ.get("USERPROFILE")
    return Path(home) if home else Path.home()


def expand_user_path(path: str) -> Path:
    """Expand a leading ~ against get_home_dir()."""
    if path.startswith("~"):
        return get_home_dir() / path[1:].lstrip("/\\")
    return Path(path)
