"""Transcript export: text rendering, download files and clipboard output."""

import asyncio
import logging
import os
import re
from pathlib import Path
from typing import Literal, Optional, Set, Tuple

from .config import OutputConfig
from .models import Task, TranscriptionResult

logger = logging.getLogger(__name__)

EXPORT_PREFIX = "transcription-"
EXPORT_SUFFIX = ".txt"

# Default commands by session type
DEFAULT_CLIPBOARD_WAYLAND = "wl-copy"
DEFAULT_CLIPBOARD_X11 = "xclip -selection clipboard"

_EXTENSION_RE = re.compile(r"\.[^/.]+$")
_RTL_RE = re.compile(
    "[\u0600-\u06FF\u0750-\u077F\u08A0-\u08FF\uFB50-\uFDFF\uFE70-\uFEFF]"
)


def format_transcript(result: TranscriptionResult) -> str:
    """Render segments as '[timestamp] speaker: text' lines."""
    return "\n".join(
        f"[{s.timestamp}] {s.speaker}: {s.text}" for s in result.segments
    )


def export_filename(original_name: str) -> str:
    """Download filename for a transcript of the given input file."""
    stem = _EXTENSION_RE.sub("", original_name)
    return f"{EXPORT_PREFIX}{stem}{EXPORT_SUFFIX}"


def is_rtl(text: Optional[str]) -> bool:
    """Whether the text contains Arabic-script (right-to-left) characters."""
    return bool(text) and _RTL_RE.search(text) is not None


def write_transcript(
    task: Task, output_dir: Path, taken: Optional[Set[Path]] = None
) -> Path:
    """Write a successful task's transcript into output_dir.

    Args:
        task: Task holding the transcript.
        output_dir: Directory the file is written into.
        taken: Paths already written in this batch. A clashing name gets a
            numeric suffix instead of overwriting the earlier transcript.
            The chosen path is added to the set.

    Raises:
        ValueError: If the task has no result.
        OSError: If the file can't be written.
    """
    if task.result is None:
        raise ValueError(f"Task {task.id} has no transcript to export")

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / export_filename(Path(task.file.name).name)

    if taken is not None:
        n = 2
        base = path
        while path in taken:
            path = base.with_name(f"{base.stem}-{n}{base.suffix}")
            n += 1
        if path != base:
            logger.warning(
                f"{base.name} already written in this batch, using {path.name} "
                f"for {task.file.name}"
            )
        taken.add(path)

    path.write_text(format_transcript(task.result), encoding="utf-8")
    logger.info(f"Wrote transcript for {task.file.name} to {path}")
    return path


def get_session_type() -> Literal["wayland", "x11", "unknown"]:
    """Detect the current session type (Wayland/X11/unknown)."""
    session_type = os.environ.get("XDG_SESSION_TYPE", "").lower()

    if session_type == "wayland":
        return "wayland"
    elif session_type == "x11":
        return "x11"
    else:
        return "unknown"


async def copy_to_clipboard(
    text: str, config: OutputConfig, timeout: float = 5.0
) -> Tuple[bool, Optional[str]]:
    """Pipe text into the configured clipboard command.

    Returns:
        Tuple of (success, error_message).
    """
    if not text:
        logger.warning("Skipping clipboard copy for empty text")
        return True, None

    session = get_session_type()
    if session == "wayland":
        default_cmd = DEFAULT_CLIPBOARD_WAYLAND
    elif session == "x11":
        default_cmd = DEFAULT_CLIPBOARD_X11
    else:
        default_cmd = None

    command_to_run = config.clipboard_command or default_cmd
    if not command_to_run:
        msg = f"No clipboard command configured and couldn't determine default for session type: {session}"
        logger.error(msg)
        return False, msg

    logger.debug(f"Executing clipboard command: {command_to_run}")

    try:
        process = await asyncio.create_subprocess_shell(
            command_to_run,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        try:
            _, stderr = await asyncio.wait_for(
                process.communicate(text.encode("utf-8")), timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"Command timed out after {timeout}s: {command_to_run}")
            try:
                process.kill()
                await process.wait()
            except ProcessLookupError:
                pass  # Process already finished
            return False, f"Command timed out after {timeout}s"

        if process.returncode != 0:
            error_msg = (
                f"Command failed with code {process.returncode}:\n"
                f"Command: {command_to_run}\n"
                f"Stderr: {stderr.decode('utf-8', errors='replace')}"
            )
            logger.error(error_msg)
            return False, error_msg

        return True, None

    except FileNotFoundError:
        msg = f"Command not found: {command_to_run}"
        logger.error(msg)
        return False, msg

    except PermissionError:
        msg = f"Permission denied executing: {command_to_run}"
        logger.error(msg)
        return False, msg
