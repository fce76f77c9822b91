"""
utils.py — Shared state, process and URL helpers for twitch-scrapurr
"""

import asyncio
import contextlib
import datetime as dt
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union
from urllib.parse import parse_qs, urlparse

logger = logging.getLogger("twitch_scrapurr")

TWITCH_HOSTS = ("twitch.tv", "www.twitch.tv", "m.twitch.tv")
CLIPS_HOST = "clips.twitch.tv"
TIMESTAMP_FORMAT = "%d_%m_%y-%H_%M"


# ───── artifact state ───── #
class ArtifactState:
    """The single in-flight output file of this run.

    The lock only ever guards the assignment or the read, never a process
    invocation, so the interrupt handler can not block behind a capture.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._current_file: Optional[Path] = None

    async def set(self, path: Path) -> None:
        async with self._lock:
            self._current_file = path

    async def read(self) -> Optional[Path]:
        async with self._lock:
            return self._current_file

    async def finish(self, path: Path) -> None:
        """Forget path once it has been post-processed, unless a newer file replaced it."""
        async with self._lock:
            if self._current_file == path:
                self._current_file = None


# ───── process runner ───── #
class ProcessRunner:
    """Launches external tools and reports their exit status.

    Args:
        exit_grace: Seconds to wait for a child to exit on its own when the
            awaiting task is cancelled. The child is never killed.
    """

    def __init__(self, exit_grace: float = 10.0):
        self.exit_grace = exit_grace

    async def run(
        self, cmd: Sequence[str], quiet: bool = False, timeout: Optional[float] = None
    ) -> int:
        """Run a command to completion.

        Args:
            cmd: Program and arguments
            quiet: If True, stdout and stderr are discarded instead of
                inherited from this process
            timeout: Seconds after which the process is killed and
                asyncio.TimeoutError is raised. None waits forever.

        Returns:
            The exit status of the process

        Raises:
            OSError: If the program could not be launched
            asyncio.TimeoutError: If the timeout expired
        """
        logger.debug(f"Running: {' '.join(cmd)}")
        out = subprocess.DEVNULL if quiet else None
        proc = await asyncio.create_subprocess_exec(*cmd, stdout=out, stderr=out)
        try:
            return await asyncio.wait_for(proc.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            raise
        except asyncio.CancelledError:
            await self._await_exit(proc, cmd[0])
            raise

    async def output(self, cmd: Sequence[str]) -> Tuple[int, bytes]:
        """Run a command and collect its stdout."""
        logger.debug(f"Running: {' '.join(cmd)}")
        proc = await asyncio.create_subprocess_exec(
            *cmd, stdout=subprocess.PIPE, stderr=subprocess.DEVNULL
        )
        try:
            stdout, _ = await proc.communicate()
        except asyncio.CancelledError:
            await self._await_exit(proc, cmd[0])
            raise
        return proc.returncode, stdout

    async def _await_exit(self, proc: asyncio.subprocess.Process, name: str) -> None:
        if proc.returncode is not None:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.exit_grace)
            logger.debug(f"{name} (PID: {proc.pid}) exited with code {proc.returncode}")
        except asyncio.TimeoutError:
            logger.warning(f"{name} (PID: {proc.pid}) is still running, leaving it alone")


# ───── targets ───── #
@dataclass(frozen=True)
class LiveTarget:
    username: str

    @property
    def url(self) -> str:
        return f"https://www.twitch.tv/{self.username}"


@dataclass(frozen=True)
class VodTarget:
    video_id: str
    url: str
    start_offset: Optional[str] = None


@dataclass(frozen=True)
class ClipTarget:
    clip_id: str
    url: str


Target = Union[LiveTarget, VodTarget, ClipTarget]


def parse_video_url(url: str) -> Target:
    """Classify a Twitch URL into a live channel, VOD or clip target.

    Args:
        url: A URL as typed by the user

    Returns:
        The resolved target

    Raises:
        ValueError: If the URL is not a recognizable Twitch URL
    """
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ValueError(f"Invalid URL: {url}")

    host = parsed.hostname.lower()
    segments: List[str] = [s for s in parsed.path.split("/") if s]

    if host == CLIPS_HOST:
        if not segments:
            raise ValueError(f"Invalid Clip URL format: {url}")
        return ClipTarget(clip_id=segments[-1], url=url)

    if host not in TWITCH_HOSTS or not segments:
        raise ValueError(f"Invalid Twitch URL: {url}")

    if segments[0] == "videos":
        if len(segments) < 2:
            raise ValueError(f"Invalid VOD URL format: {url}")
        offset = parse_qs(parsed.query).get("t", [None])[0]
        return VodTarget(video_id=segments[1], url=url, start_offset=offset or None)

    if "clip" in segments:
        if segments[-1] == "clip":
            raise ValueError(f"Invalid Clip URL format: {url}")
        return ClipTarget(clip_id=segments[-1], url=url)

    return LiveTarget(username=segments[0])


# ───── misc ───── #
def recording_timestamp(now: Optional[dt.datetime] = None) -> str:
    return (now or dt.datetime.now()).strftime(TIMESTAMP_FORMAT)


async def get_video_duration(filepath: Path, runner: ProcessRunner) -> Optional[float]:
    """Get video duration in seconds using ffprobe.

    Returns:
        Duration in seconds as float, or None if unable to determine.
    """
    cmd = [
        "ffprobe",
        "-v", "quiet",
        "-show_entries", "format=duration",
        "-of", "csv=p=0",
        str(filepath),
    ]
    try:
        returncode, stdout = await runner.output(cmd)
    except OSError as e:
        logger.debug(f"ffprobe unavailable: {e}")
        return None

    if returncode != 0:
        return None
    try:
        return float(stdout.decode().strip())
    except ValueError:
        return None


def format_duration(seconds: float) -> str:
    total = int(seconds)
    return f"{total // 3600:d}:{total % 3600 // 60:02d}:{total % 60:02d}"
