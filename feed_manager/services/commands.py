"""
Run the external packaging tool (``dotnet``) for pack, push and delete.

Output is captured line by line, logged, and optionally forwarded to a
callback so a caller can stream it. Exit code 0 means success; anything else
is a failure whose detail is the captured stderr.
"""
from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from feed_manager.domain.errors import CommandFailedError
from feed_manager.domain.models import CommandResult, FeedConfig, PathLike
from feed_manager.services.feed_client import run_cancellable

logger = logging.getLogger(__name__)

DOTNET_EXECUTABLE = "dotnet"
SECRET_FLAGS = ("--api-key", "-k")
MASK = "***"

READ_CHUNK_SIZE = 64 * 1024

LineCallback = Callable[[str], None]


async def _kill(process: asyncio.subprocess.Process) -> None:
    try:
        process.kill()
    except ProcessLookupError:
        # exited between the returncode check and kill()
        pass
    await process.wait()


def mask_secrets(args: Sequence[str]) -> List[str]:
    """Replace the value following an API key flag with a mask."""
    masked: List[str] = []
    hide_next = False
    for arg in args:
        masked.append(MASK if hide_next else str(arg))
        hide_next = str(arg) in SECRET_FLAGS
    return masked


def get_dotnet_executable() -> str:
    """Path to the dotnet executable, or the bare name if it is not on PATH."""
    return shutil.which(DOTNET_EXECUTABLE) or DOTNET_EXECUTABLE


class CommandRunner:
    """Runs one external command per call and captures its output."""

    def __init__(self, executable: Optional[str] = None):
        self.executable = executable or get_dotnet_executable()

    async def run(
        self,
        args: Sequence[str],
        cwd: Optional[PathLike] = None,
        on_line: Optional[LineCallback] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> CommandResult:
        """
        Run ``args`` (program first) and wait for it to exit.

        Returns the CommandResult whatever the exit code; a program that
        cannot be started raises CommandFailedError with exit code -1.
        """
        display = mask_secrets(args)
        logger.info(f"Running: {' '.join(display)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *[str(a) for a in args],
                cwd=str(cwd) if cwd else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"Could not start {display[0]}: {e}")
            raise CommandFailedError(display, -1, str(e)) from e

        stdout_lines: List[str] = []
        stderr_lines: List[str] = []

        def emit(raw: bytes, sink: List[str], level: int) -> None:
            line = raw.decode("utf-8", errors="replace").rstrip("\r")
            sink.append(line)
            logger.log(level, line)
            if on_line is not None:
                on_line(line)

        async def pump(stream: asyncio.StreamReader, sink: List[str], level: int) -> None:
            # Split lines ourselves; StreamReader.readline() fails on lines over its buffer limit.
            pending = b""
            while True:
                chunk = await stream.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                *complete, pending = (pending + chunk).split(b"\n")
                for raw in complete:
                    emit(raw, sink, level)
            if pending:
                emit(pending, sink, level)

        async def communicate() -> int:
            await asyncio.gather(
                pump(process.stdout, stdout_lines, logging.INFO),
                pump(process.stderr, stderr_lines, logging.WARNING),
            )
            return await process.wait()

        try:
            exit_code = await run_cancellable(communicate(), cancel, "Command")
        except (OSError, ValueError) as e:
            logger.error(f"Reading output of {display[0]} failed: {e}")
            raise CommandFailedError(display, -1, "\n".join(stderr_lines) or str(e)) from e
        finally:
            if process.returncode is None:
                await _kill(process)

        result = CommandResult(
            args=display,
            exit_code=exit_code,
            stdout="\n".join(stdout_lines),
            stderr="\n".join(stderr_lines),
        )
        if result.succeeded:
            logger.info(f"Command succeeded: {display[0]} {' '.join(display[1:3])}")
        else:
            logger.error(f"Command exited with {exit_code}: {result.stderr or result.stdout}")
        return result

    # ------------------------------------------------------------------
    # dotnet helpers
    # ------------------------------------------------------------------

    async def pack_project(
        self,
        project_path: PathLike,
        output_dir: Optional[PathLike] = None,
        version: Optional[str] = None,
        on_line: Optional[LineCallback] = None,
    ) -> CommandResult:
        """
        ``dotnet pack`` a project in Release configuration.

        Packages go to ``output_dir``, by default a ``nupkgs`` folder next to
        the project's directory.
        """
        project = Path(project_path)
        if not project.is_file():
            raise CommandFailedError([self.executable, "pack", str(project)], -1, f"Project file not found: {project}")

        out_dir = Path(output_dir) if output_dir else project.parent / ".." / "nupkgs"
        out_dir.mkdir(parents=True, exist_ok=True)

        args = [self.executable, "pack", str(project), "-c", "Release", "-o", str(out_dir)]
        if version:
            args.append(f"/p:PackageVersion={version}")
        return await self.run(args, on_line=on_line)

    async def push_with_cli(
        self,
        package_file: PathLike,
        config: FeedConfig,
        on_line: Optional[LineCallback] = None,
    ) -> CommandResult:
        package = Path(package_file)
        if not package.is_file():
            raise CommandFailedError([self.executable, "nuget", "push"], -1, f"Package file not found: {package}")

        args = [
            self.executable, "nuget", "push", str(package),
            "--source", config.feed_url,
            "--allow-insecure-connections",
        ]
        if config.api_key:
            args += ["--api-key", config.api_key]
        return await self.run(args, on_line=on_line)

    async def delete_with_cli(
        self,
        package_id: str,
        version: str,
        config: FeedConfig,
        on_line: Optional[LineCallback] = None,
    ) -> CommandResult:
        args = [self.executable, "nuget", "delete", package_id, version, "--source", config.feed_url]
        if config.api_key:
            args += ["--api-key", config.api_key]
        args.append("--non-interactive")
        return await self.run(args, on_line=on_line)
