"""Command-line entry point for bracual."""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import List, NoReturn, Optional, Set

from .config import AppConfig, load_config
from .errors import SessionError
from .export import copy_to_clipboard, format_transcript, write_transcript
from .logging_setup import setup_logging
from .models import AudioFile, TaskStatus
from .scheduler import PipelineScheduler
from .session import SessionStore
from .task_queue import TaskQueue
from .transcriber import GroqTranscriber

logger = logging.getLogger(__name__)

__all__ = ["run"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bracual", description="Fast 8kHz audio transcription queue."
    )
    parser.add_argument("--config", type=Path, help="Path to config.toml")
    sub = parser.add_subparsers(dest="command", required=True)

    login = sub.add_parser("login", help="Sign in")
    login.add_argument("email")

    sub.add_parser("logout", help="Sign out")
    sub.add_parser("whoami", help="Show the signed-in user")

    transcribe = sub.add_parser("transcribe", help="Transcribe audio files")
    transcribe.add_argument("files", nargs="+", type=Path)
    transcribe.add_argument(
        "-o", "--output-dir", type=Path, help="Directory for transcript files"
    )
    transcribe.add_argument(
        "--copy", action="store_true", help="Copy the first transcript to the clipboard"
    )
    return parser


def _read_files(paths: List[Path]) -> List[AudioFile]:
    files = []
    for path in paths:
        try:
            files.append(AudioFile.from_path(path))
        except OSError as e:
            print(f"Cannot read {path}: {e}", file=sys.stderr)
    return files


async def transcribe_files(
    config: AppConfig,
    session: SessionStore,
    paths: List[Path],
    output_dir: Optional[Path] = None,
    copy: bool = False,
) -> int:
    """Queue files, process them all and export the transcripts.

    Returns:
        Exit code (0 only if every file was transcribed).
    """
    if not session.is_authenticated:
        print("Not signed in. Run 'bracual login EMAIL' first.", file=sys.stderr)
        return 1

    files = _read_files(paths)
    if not files:
        return 1

    queue = TaskQueue(max_input_file_size=config.pipeline.max_input_file_size)
    stop_event = asyncio.Event()
    scheduler = PipelineScheduler(
        config, queue, session, GroqTranscriber(config.transcription), stop_event
    )

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {signal.Signals(sig).name}, stopping...")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))

    await scheduler.start()
    try:
        queue.submit(files)
        idle = asyncio.create_task(scheduler.wait_until_idle())
        stopped = asyncio.create_task(stop_event.wait())
        await asyncio.wait({idle, stopped}, return_when=asyncio.FIRST_COMPLETED)
        for pending in (idle, stopped):
            pending.cancel()
    finally:
        await scheduler.stop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)

    target_dir = output_dir or config.output.output_dir or Path.cwd()
    exit_code = 0
    copied = False
    written: Set[Path] = set()
    for task in queue.tasks:
        if task.status == TaskStatus.SUCCESS:
            try:
                path = write_transcript(task, target_dir, written)
            except OSError as e:
                print(f"{task.file.name}: cannot write transcript: {e}", file=sys.stderr)
                exit_code = 1
                continue
            print(f"{task.file.name}: {task.status.value} -> {path}")
            if task.result.summary:
                print(f"  Summary: {task.result.summary}")
            if copy and not copied:
                success, error = await copy_to_clipboard(
                    format_transcript(task.result), config.output
                )
                copied = success
                if not success:
                    print(f"  Clipboard copy failed: {error}", file=sys.stderr)
        else:
            exit_code = 1
            detail = task.error or "not processed"
            print(f"{task.file.name}: {task.status.value} ({detail})")

    return exit_code


async def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI function.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        return 1

    setup_logging(config.runtime.log_level, config.runtime.log_file)

    session = SessionStore(config.runtime.computed_session_file)
    session.load()

    try:
        if args.command == "login":
            user = session.login(args.email)
            print(f"Signed in as {user.email}")
            return 0
        if args.command == "logout":
            session.logout()
            print("Signed out")
            return 0
        if args.command == "whoami":
            if not session.user:
                print("Not signed in")
                return 1
            print(session.user.email)
            return 0
    except SessionError as e:
        print(str(e), file=sys.stderr)
        return 1

    return await transcribe_files(
        config, session, args.files, args.output_dir, args.copy
    )


def run() -> NoReturn:
    """Entry point for the CLI."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)
