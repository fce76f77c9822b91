"""
verifications.py — Startup checks for twitch-scrapurr
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from config import Settings
from utils import ProcessRunner

logger = logging.getLogger("twitch_scrapurr")


async def _verify_tool(runner: ProcessRunner, name: str, version_flag: str) -> bool:
    """Check that an external program can be launched."""
    try:
        returncode = await runner.run([name, version_flag], quiet=True)
    except OSError:
        logger.debug(f"{name} could not be launched")
        return False
    if returncode != 0:
        logger.debug(f"{name} {version_flag} exited with code {returncode}")
        return False
    logger.debug(f"{name} found")
    return True


def _verify_output_folder(output_folder: Path) -> bool:
    """Create the output folder if needed and make sure it is writable."""
    if not output_folder.exists():
        try:
            output_folder.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created output folder at {output_folder}")
        except OSError as e:
            logger.error(f"Cannot create output folder at {output_folder}: {e}")
            return False

    test_file = output_folder / ".write_test"
    try:
        test_file.write_text("test")
        test_file.unlink()
    except OSError as e:
        logger.error(f"No write permission for output folder at {output_folder}: {e}")
        return False
    return True


async def verify_environment_async(settings: Settings, runner: ProcessRunner) -> bool:
    if not _verify_output_folder(Path(settings.output_folder)):
        return False

    if not await _verify_tool(runner, "streamlink", "--version"):
        logger.error("streamlink not found. Install it with `pip install streamlink`")
        return False

    if settings.convert_to_mp4 and settings.use_ffmpeg_convert:
        if not await _verify_tool(runner, "ffmpeg", "-version"):
            logger.error("FFmpeg not found. Use apt/yum install ffmpeg, or set use_ffmpeg_convert = false")
            return False

    if settings.generate_contact_sheet:
        if not await _verify_tool(runner, "vcsi", "--help"):
            logger.warning("vcsi not found, contact sheets will not be generated")

    return True


def verify_environment(settings: Settings, runner: Optional[ProcessRunner] = None) -> bool:
    """Verify the output folder and the external tools before recording.

    Checks:
    1. The output folder exists (or can be created) and is writable
    2. streamlink is installed
    3. FFmpeg is installed, when conversion through FFmpeg is enabled
    4. vcsi is installed, when contact sheets are enabled (warning only)

    Returns:
        bool: True if recording can start, False otherwise
    """
    logger.info("Verifying output folder and external tools...")
    ok = asyncio.run(verify_environment_async(settings, runner or ProcessRunner()))
    if ok:
        logger.info("Verification successful")
    return ok
