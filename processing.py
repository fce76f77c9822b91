"""
processing.py — Post-processing of finished recordings and downloads
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional

from config import Settings
from utils import ProcessRunner, format_duration, get_video_duration

logger = logging.getLogger("twitch_scrapurr")

RAW_SUFFIX = ".ts"
CONVERTED_SUFFIX = ".mp4"

CONTACT_SHEET_GRID = "4x6"
CONTACT_SHEET_SAMPLES = 24
CONTACT_SHEET_WIDTH = 1500


@dataclass(frozen=True)
class ProcessedArtifact:
    media_path: Path
    contact_sheet: Optional[Path] = None


async def convert_to_mp4(
    settings: Settings, ts_filepath: Path, runner: ProcessRunner
) -> Path:
    """Move a raw .ts recording into an .mp4 container.

    With use_ffmpeg_convert the streams are copied into a new container by
    FFmpeg and the .ts file is deleted afterwards. Otherwise the file is
    only renamed. Any failure leaves the raw file where it is.

    Args:
        settings: Run settings
        ts_filepath: The raw recording
        runner: Process runner used to launch FFmpeg

    Returns:
        The path holding the media after this step
    """
    mp4_filepath = ts_filepath.with_suffix(CONVERTED_SUFFIX)

    if not settings.use_ffmpeg_convert:
        try:
            ts_filepath.rename(mp4_filepath)
        except OSError as e:
            logger.error(f"Failed to rename {ts_filepath.name}: {e}. Keeping original file.")
            return ts_filepath
        logger.info(f"Renamed and saved as: {mp4_filepath}")
        return mp4_filepath

    cmd = [
        "ffmpeg",
        "-hide_banner",
        "-loglevel", "error",
        "-i", str(ts_filepath),
        "-c", "copy",
        "-y",
        str(mp4_filepath),
    ]
    logger.info(f"CONVERTING {ts_filepath.name} to {mp4_filepath.name}")
    try:
        returncode = await runner.run(cmd, quiet=True)
    except OSError as e:
        logger.error(f"[ffmpeg] Could not start conversion: {e}. Keeping original file.")
        return ts_filepath

    if returncode != 0:
        logger.error(
            f"[ffmpeg] Conversion failed (exit code {returncode}). Keeping original file."
        )
        return ts_filepath

    try:
        ts_filepath.unlink()
        logger.debug(f"Deleted original .ts file: {ts_filepath.name}")
    except OSError as e:
        logger.error(f"Failed to delete original .ts file {ts_filepath}: {e}")
    logger.info(f"[ffmpeg] Converted and saved as: {mp4_filepath}")
    return mp4_filepath


async def generate_contact_sheet(media_path: Path, runner: ProcessRunner) -> Optional[Path]:
    """Render a thumbnail grid next to a media file using vcsi.

    Returns:
        Path to the generated .jpg, or None if vcsi failed
    """
    sheet_path = media_path.with_suffix(".jpg")
    cmd = [
        "vcsi",
        str(media_path),
        "--grid", CONTACT_SHEET_GRID,
        "--num-samples", str(CONTACT_SHEET_SAMPLES),
        "--show-timestamp",
        "--width", str(CONTACT_SHEET_WIDTH),
        "--output", str(sheet_path),
    ]
    try:
        returncode = await runner.run(cmd, quiet=True)
    except OSError as e:
        logger.error(f"Failed to generate contact sheet: {e}")
        return None

    if returncode != 0 or not sheet_path.exists():
        logger.error(f"Failed to generate contact sheet for {media_path.name} (exit code {returncode})")
        return None

    logger.info(f"[vcsi] Generated contact sheet: {sheet_path}")
    return sheet_path


async def process_file(
    settings: Settings,
    filepath: Path,
    runner: ProcessRunner,
    on_converted: Optional[Callable[[Path], Awaitable[None]]] = None,
) -> Optional[ProcessedArtifact]:
    """Turn a finished capture into its final form.

    Steps:
    1. Skip files that do not exist or are empty
    2. Convert .ts to .mp4 if convert_to_mp4 is enabled
    3. Generate a contact sheet if generate_contact_sheet is enabled

    Only the guard can stop the pipeline; conversion and contact sheet
    failures are logged and the media file is kept.

    Args:
        settings: Run settings
        filepath: The raw (or already processed) media file
        runner: Process runner for the external tools
        on_converted: Awaited with the new path once the raw file has been
            replaced by a converted one

    Returns:
        The processed artifact, or None if there was nothing to process
    """
    try:
        size = filepath.stat().st_size if filepath.is_file() else 0
    except OSError:
        size = 0
    if size == 0:
        logger.info(f"File {filepath.name} is empty or does not exist. Skipping processing.")
        return None

    media_path = filepath
    if settings.convert_to_mp4 and filepath.suffix == RAW_SUFFIX:
        media_path = await convert_to_mp4(settings, filepath, runner)
        if on_converted and media_path != filepath:
            await on_converted(media_path)
    else:
        logger.info(f"Saved as: {media_path}")

    duration = await get_video_duration(media_path, runner)
    if duration is not None:
        logger.info(f"{media_path.name} duration: {format_duration(duration)}")

    sheet_path = None
    if settings.generate_contact_sheet:
        sheet_path = await generate_contact_sheet(media_path, runner)

    return ProcessedArtifact(media_path=media_path, contact_sheet=sheet_path)
