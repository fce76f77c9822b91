#!/usr/bin/env python3
"""
scrapurr.py — Twitch live stream recorder and VOD/clip downloader with post-processing and clean shutdown
"""

import argparse
import asyncio
import datetime as dt
import logging
import logging.handlers
import signal
import sys
from pathlib import Path
from typing import Callable, List, Optional, Set, Tuple, Union

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from api import send_discord_notification
from config import ConfigError, Settings, load_config, log_dir
from processing import ProcessedArtifact, process_file
from utils import (
    ArtifactState,
    ClipTarget,
    LiveTarget,
    ProcessRunner,
    Target,
    VodTarget,
    parse_video_url,
    recording_timestamp,
)
from verifications import verify_environment

PROBE_TIMEOUT = 60  # seconds
PROBE_ATTEMPTS = 3
NOTIFY_TIMEOUT = 15  # seconds

logger = logging.getLogger("twitch_scrapurr")


# ───── logging setup ───── #
def setup_logging(verbose: bool = False) -> None:
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    ch = logging.StreamHandler()
    ch.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    logger.addHandler(ch)

    try:
        directory = log_dir()
        directory.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            str(directory / "scrapurr.log"),
            maxBytes=5_000_000,
            backupCount=3,
        )
    except OSError as e:
        logger.warning(f"File logging disabled: {e}")
        return
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    )
    logger.addHandler(file_handler)


# ───── Recorder ───── #
class Recorder:
    """Drives the capture of one target and hands finished files to post-processing.

    Live channels are polled until they go live, recorded until the stream
    ends, and polled again. VODs and clips are downloaded once. Every file
    is registered in the shared ArtifactState before streamlink is started
    so that shutdown always knows which file is in flight.

    Args:
        settings: Run settings
        state: The artifact state shared with the interrupt handler and finalizer
        runner: Launches streamlink and the post-processing tools
        sleep: Coroutine used to wait between polls
        clock: Returns the time used in recording file names
    """

    def __init__(
        self,
        settings: Settings,
        state: ArtifactState,
        runner: ProcessRunner,
        sleep: Callable = asyncio.sleep,
        clock: Callable[[], dt.datetime] = dt.datetime.now,
    ):
        self.settings = settings
        self.state = state
        self.runner = runner
        self.sleep = sleep
        self.clock = clock
        self.probe_timeout = PROBE_TIMEOUT
        self.probe_attempts = PROBE_ATTEMPTS
        self._notifications: Set[asyncio.Task] = set()

    async def run_target(self, target: Target) -> None:
        if isinstance(target, LiveTarget):
            await self.record_stream(target)
        else:
            await self.fetch(target)

    async def probe(self, target: LiveTarget) -> bool:
        """Ask streamlink whether the channel currently has a playable stream.

        Hanging probes are killed after probe_timeout seconds and retried.
        """
        cmd = ["streamlink", "--stream-url", target.url, "best"]
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.probe_attempts),
                wait=wait_exponential(multiplier=1, min=2, max=30),
                retry=retry_if_exception_type(asyncio.TimeoutError),
                reraise=True,
            ):
                with attempt:
                    returncode = await self.runner.run(
                        cmd, quiet=True, timeout=self.probe_timeout
                    )
        except asyncio.TimeoutError:
            logger.warning(f"Probe for {target.username} timed out {self.probe_attempts} times")
            return False
        except OSError as e:
            logger.error(f"Failed to launch streamlink probe: {e}")
            return False
        return returncode == 0

    async def capture(
        self, url: str, output_path: Path, start_offset: Optional[str] = None
    ) -> bool:
        """Run streamlink until the stream or download ends.

        Returns:
            True if streamlink exited successfully

        Raises:
            OSError: If streamlink could not be launched
        """
        cmd = ["streamlink", "--twitch-disable-ads", url, "best", "-o", str(output_path)]
        if start_offset:
            cmd += ["--hls-start-offset", start_offset]
        returncode = await self.runner.run(cmd)
        if returncode != 0:
            logger.warning(f"streamlink exited with code {returncode} for {output_path.name}")
        return returncode == 0

    async def record_stream(self, target: LiveTarget) -> None:
        """Poll a channel forever, recording every broadcast.

        Raises:
            OSError: If the recording folder can not be created
        """
        username = target.username
        vod_folder = Path(self.settings.output_folder) / username / "vods"
        vod_folder.mkdir(parents=True, exist_ok=True)

        while True:
            if await self.probe(target):
                logger.info(f"Stream is live! Recording {username}'s stream.")
                ts_filepath = self._unique_path(
                    vod_folder, f"{username}-{recording_timestamp(self.clock())}"
                )
                await self.state.set(ts_filepath)
                self._notify(f"🟣 {username} is live", f"Recording to {ts_filepath.name}", username)

                try:
                    ok = await self.capture(target.url, ts_filepath)
                except OSError as e:
                    logger.error(f"Failed to launch streamlink for {username}: {e}")
                    ok = False

                if ok:
                    logger.info("Stream ended. Processing file...")
                    await self._process(ts_filepath, username)
                logger.info("Waiting briefly before checking for the next stream...")
            else:
                logger.info(f"No available streams found for {username}.")
                logger.info(
                    f"Checking for {username} stream again in {self.settings.check_interval} seconds..."
                )
            await self.sleep(self.settings.check_interval)

    async def fetch(self, target: Union[VodTarget, ClipTarget]) -> None:
        """Download a single VOD or clip and post-process it.

        Download failures are logged and end the run normally.

        Raises:
            OSError: If the destination folder can not be created
        """
        kind, output_path, start_offset = self._fetch_destination(target)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        await self.state.set(output_path)

        logger.info(f"Downloading {kind}: {target.url}")
        try:
            ok = await self.capture(target.url, output_path, start_offset)
        except OSError as e:
            logger.error(f"Failed to launch streamlink: {e}")
            return

        if ok:
            logger.info(f"{kind} download complete. Processing file...")
            await self._process(output_path)
        else:
            logger.error(f"Failed to download {kind}.")

    def _fetch_destination(
        self, target: Union[VodTarget, ClipTarget]
    ) -> Tuple[str, Path, Optional[str]]:
        root = Path(self.settings.output_folder)
        if isinstance(target, VodTarget):
            return "VOD", root / f"vod_{target.video_id}.ts", target.start_offset
        return "Clip", root / "clips" / f"{target.clip_id}.ts", None

    @staticmethod
    def _unique_path(folder: Path, stem: str) -> Path:
        # two broadcasts within the same minute must not overwrite each other
        candidate = folder / f"{stem}.ts"
        idx = 1
        while candidate.exists() or candidate.with_suffix(".mp4").exists():
            idx += 1
            candidate = folder / f"{stem} ({idx}).ts"
        return candidate

    async def _process(self, filepath: Path, username: Optional[str] = None) -> None:
        artifact = await process_file(
            self.settings, filepath, self.runner, on_converted=self.state.set
        )
        await self.state.finish(artifact.media_path if artifact else filepath)
        if artifact:
            self.notify_saved(artifact, username)

    def notify_saved(self, artifact: ProcessedArtifact, username: Optional[str] = None) -> None:
        self._notify("Recording saved", artifact.media_path.name, username)

    def _notify(self, title: str, description: str, username: Optional[str] = None) -> None:
        if not self.settings.discord_webhook_url:
            return
        task = asyncio.create_task(
            send_discord_notification(self.settings, title, description, username)
        )
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)

    async def drain_notifications(self, timeout: float = NOTIFY_TIMEOUT) -> None:
        """Give pending notifications up to timeout seconds to be delivered."""
        if not self._notifications:
            return
        _, pending = await asyncio.wait(set(self._notifications), timeout=timeout)
        if pending:
            logger.warning(f"Dropping {len(pending)} undelivered notification(s)")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)


# ───── shutdown ───── #
async def wait_for_interrupt(state: ArtifactState, stop_evt: asyncio.Event) -> None:
    await stop_evt.wait()
    logger.info("Received interrupt, shutting down gracefully ᗜˬᗜ")
    current_file = await state.read()
    if current_file:
        logger.info(f"Interrupt received. Current file: {current_file}")


async def finalize(
    settings: Settings, state: ArtifactState, runner: ProcessRunner
) -> Optional[ProcessedArtifact]:
    """Post-process the last tracked file, if any, before exiting."""
    current_file = await state.read()
    if current_file is None:
        return None
    logger.info("Processing last recorded/downloaded file...")
    return await process_file(settings, current_file, runner)


def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop, stop_evt: asyncio.Event, signals
) -> List[Tuple[int, object]]:
    """Route signals to stop_evt.

    Returns:
        (signal, previous handler) pairs; the previous handler is None
        where the event loop owns the signal
    """
    installed = []
    for sig in signals:
        try:
            loop.add_signal_handler(sig, stop_evt.set)
            installed.append((sig, None))
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            previous = signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_evt.set))
            # None means the old handler was not installed from Python
            installed.append((sig, signal.SIG_DFL if previous is None else previous))
    return installed


def _restore_signal_handlers(loop: asyncio.AbstractEventLoop, installed) -> None:
    for sig, previous in installed:
        if previous is None:
            loop.remove_signal_handler(sig)
        else:
            signal.signal(sig, previous)


async def run(
    settings: Settings,
    target: Target,
    runner: Optional[ProcessRunner] = None,
    stop_evt: Optional[asyncio.Event] = None,
    signals=(signal.SIGINT, signal.SIGTERM),
    recorder_factory=Recorder,
) -> Optional[ProcessedArtifact]:
    """Race the recorder against a termination signal, then finalize.

    Whichever finishes first ends the race and the other task is cancelled.
    Cancelling the recorder never kills a running streamlink process. The
    finalizer then runs exactly once against the artifact state, and
    pending notifications get a bounded amount of time to go out.

    Args:
        settings: Run settings
        target: What to record or download
        runner: Process runner, a real ProcessRunner by default
        stop_evt: Event that ends the run when set. Installed as the
            handler for each signal in signals.
        signals: Signals that request shutdown
        recorder_factory: Builds the Recorder from (settings, state, runner)

    Returns:
        The artifact produced by the finalizer, if any
    """
    runner = runner or ProcessRunner()
    if stop_evt is None:
        stop_evt = asyncio.Event()
    state = ArtifactState()
    recorder = recorder_factory(settings, state, runner)

    loop = asyncio.get_running_loop()
    installed = _install_signal_handlers(loop, stop_evt, signals)

    active = asyncio.create_task(recorder.run_target(target))
    interrupt = asyncio.create_task(wait_for_interrupt(state, stop_evt))
    try:
        await asyncio.wait({active, interrupt}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (active, interrupt):
            task.cancel()
        await asyncio.gather(active, interrupt, return_exceptions=True)
        _restore_signal_handlers(loop, installed)

    if not active.cancelled() and active.exception() is not None:
        logger.error(f"Recording error: {active.exception()}")

    artifact = await finalize(settings, state, runner)
    if artifact:
        recorder.notify_saved(artifact, getattr(target, "username", None))
    await recorder.drain_notifications()
    return artifact


# ───── CLI ───── #
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="twitch-scrapurr",
        description="Record Twitch live streams or download VODs and clips.",
    )
    parser.add_argument("-u", "--username", help="Twitch username to record")
    parser.add_argument("-o", "--output-dir", help="Custom output directory")
    parser.add_argument("-v", "--video-url", help="Twitch channel, VOD or clip URL")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def resolve_target(args: argparse.Namespace, prompt=input) -> Target:
    """Work out what to capture from the command line.

    Raises:
        ValueError: If the URL is not a Twitch URL or no username was given
    """
    if args.video_url:
        return parse_video_url(args.video_url)

    username = args.username
    if not username:
        try:
            username = prompt("Streamer Username to record: ")
        except EOFError:
            username = ""
    username = username.strip().lstrip("@")
    if not username:
        raise ValueError("A streamer username is required")
    return LiveTarget(username=username)


def main(argv=None) -> int:
    """Application entry point.

    Loads the configuration, resolves the target and verifies the external
    tools, then records until the target is done or a signal arrives.
    """
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = load_config()
        if args.output_dir:
            settings = settings.with_output_folder(args.output_dir)
        target = resolve_target(args)
    except (ConfigError, ValueError) as e:
        logger.error(str(e))
        return 1

    if not verify_environment(settings):
        logger.error("Exiting due to missing tools or output folder errors.")
        return 1

    try:
        asyncio.run(run(settings, target))
    except KeyboardInterrupt:
        logger.warning("Interrupted again, post-processing aborted")
        return 130
    logger.info("Exited cleanly")
    return 0


if __name__ == "__main__":
    sys.exit(main())
