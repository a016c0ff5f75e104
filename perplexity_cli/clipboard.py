"""Copy text to the system clipboard through the platform's command line tool."""

import logging
import shutil
import subprocess
import sys
from typing import List, Optional

from .models import PerplexityError

log = logging.getLogger(__name__)

# Tried in order on Linux
LINUX_TOOLS = [
    ["xclip", "-selection", "clipboard"],
    ["xsel", "--clipboard", "--input"],
    ["wl-copy"],
]


class ClipboardError(PerplexityError):
    """Raised when text cannot be copied, with an optional hint for the user."""

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(f"{message}. {hint}" if hint else message)
        self.message = message
        self.hint = hint


def clipboard_command(platform: Optional[str] = None) -> List[str]:
    """
    Pick the clipboard command for a platform.

    Args:
        platform: A ``sys.platform`` value; defaults to the running platform

    Raises:
        ClipboardError: If no usable tool is installed
    """
    platform = platform or sys.platform

    if platform == "darwin":
        if shutil.which("pbcopy") is None:
            raise ClipboardError(
                "pbcopy command not found",
                "This is unexpected on macOS - pbcopy should be available by default",
            )
        return ["pbcopy"]

    if platform.startswith("linux"):
        for command in LINUX_TOOLS:
            if shutil.which(command[0]) is not None:
                return command
        raise ClipboardError(
            "no clipboard tool found",
            "Install one of: xclip (sudo apt install xclip), xsel (sudo apt install xsel), "
            "or wl-copy for Wayland (sudo apt install wl-clipboard)",
        )

    if platform == "win32":
        return ["clip"]

    raise ClipboardError(f"clipboard not supported on {platform}")


def copy_to_clipboard(text: str) -> None:
    """
    Copy ``text`` to the clipboard.

    Raises:
        ClipboardError: If no tool is available or the tool fails
    """
    command = clipboard_command()
    log.debug("Copying %d characters with %s", len(text), command[0])
    try:
        subprocess.run(command, input=text, text=True, check=True)
    except (OSError, subprocess.CalledProcessError) as e:
        raise ClipboardError(
            f"failed to copy to clipboard: {e}",
            "Make sure the clipboard tool is working correctly",
        ) from e
