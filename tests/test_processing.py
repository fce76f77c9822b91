"""Tests for the post-processing pipeline."""

from pathlib import Path

import pytest

from processing import ProcessedArtifact, convert_to_mp4, generate_contact_sheet, process_file


@pytest.fixture
def ts_file(tmp_path) -> Path:
    path = tmp_path / "streamer-18_10_26-20_15.ts"
    path.write_bytes(b"\x47" * 376)
    return path


class TestGuard:
    async def test_missing_file_is_noop(self, settings, runner, tmp_path):
        missing = tmp_path / "nothing.ts"

        result = await process_file(settings, missing, runner)

        assert result is None
        assert runner.calls == []
        assert not missing.with_suffix(".mp4").exists()
        assert not missing.with_suffix(".jpg").exists()

    async def test_empty_file_is_noop(self, settings, runner, tmp_path):
        empty = tmp_path / "empty.ts"
        empty.touch()

        result = await process_file(settings, empty, runner)

        assert result is None
        assert runner.calls == []
        assert empty.exists()
        assert not empty.with_suffix(".mp4").exists()


class TestConversion:
    async def test_successful_transcode_removes_raw(self, settings, runner, ts_file):
        result = await process_file(settings, ts_file, runner)

        mp4 = ts_file.with_suffix(".mp4")
        assert not ts_file.exists()
        assert mp4.exists()
        assert result.media_path == mp4

        (cmd,) = runner.commands("ffmpeg")
        assert cmd[cmd.index("-i") + 1] == str(ts_file)
        assert cmd[cmd.index("-c") + 1] == "copy"
        assert "-y" in cmd
        assert cmd[-1] == str(mp4)

    async def test_failed_transcode_keeps_raw(self, settings, runner, ts_file):
        runner.on("ffmpeg", lambda cmd: 1)

        result = await process_file(settings, ts_file, runner)

        assert ts_file.exists()
        assert result.media_path == ts_file

    async def test_transcoder_launch_failure_keeps_raw(self, settings, runner, ts_file):
        def missing(cmd):
            raise FileNotFoundError("ffmpeg")

        runner.on("ffmpeg", missing)

        path = await convert_to_mp4(settings, ts_file, runner)

        assert path == ts_file
        assert ts_file.exists()

    async def test_rename_without_transcoder(self, make_settings, runner, ts_file):
        settings = make_settings(use_ffmpeg_convert=False)

        result = await process_file(settings, ts_file, runner)

        assert runner.commands("ffmpeg") == []
        assert not ts_file.exists()
        assert ts_file.with_suffix(".mp4").exists()
        assert result.media_path == ts_file.with_suffix(".mp4")

    async def test_converted_path_is_reported_before_contact_sheet(self, settings, runner, ts_file):
        events = []

        async def on_converted(path):
            events.append(("converted", path))

        def vcsi(cmd):
            events.append(("vcsi", Path(cmd[1])))
            return 1

        runner.on("vcsi", vcsi)

        await process_file(settings, ts_file, runner, on_converted=on_converted)

        mp4 = ts_file.with_suffix(".mp4")
        assert events == [("converted", mp4), ("vcsi", mp4)]

    async def test_failed_transcode_reports_nothing(self, settings, runner, ts_file):
        reported = []

        async def on_converted(path):
            reported.append(path)

        runner.on("ffmpeg", lambda cmd: 1)

        await process_file(settings, ts_file, runner, on_converted=on_converted)

        assert reported == []

    async def test_conversion_disabled(self, make_settings, runner, ts_file):
        settings = make_settings(convert_to_mp4=False, generate_contact_sheet=False)

        result = await process_file(settings, ts_file, runner)

        assert result == ProcessedArtifact(media_path=ts_file, contact_sheet=None)
        assert runner.commands("ffmpeg") == []
        assert ts_file.exists()


class TestContactSheet:
    async def test_sheet_is_sibling_jpg(self, settings, runner, ts_file):
        result = await process_file(settings, ts_file, runner)

        mp4 = ts_file.with_suffix(".mp4")
        assert result.contact_sheet == mp4.with_suffix(".jpg")
        assert result.contact_sheet.exists()

        (cmd,) = runner.commands("vcsi")
        assert cmd[1] == str(mp4)
        assert cmd[cmd.index("--grid") + 1] == "4x6"
        assert cmd[cmd.index("--num-samples") + 1] == "24"
        assert "--show-timestamp" in cmd

    async def test_sheet_failure_does_not_fail_pipeline(self, settings, runner, ts_file):
        runner.on("vcsi", lambda cmd: 2)

        result = await process_file(settings, ts_file, runner)

        assert result.media_path == ts_file.with_suffix(".mp4")
        assert result.media_path.exists()
        assert result.contact_sheet is None

    async def test_sheet_launch_failure(self, runner, tmp_path):
        def missing(cmd):
            raise FileNotFoundError("vcsi")

        runner.on("vcsi", missing)
        media = tmp_path / "clip.mp4"
        media.write_bytes(b"data")

        assert await generate_contact_sheet(media, runner) is None

    async def test_sheet_skipped_when_disabled(self, make_settings, runner, ts_file):
        settings = make_settings(generate_contact_sheet=False)

        result = await process_file(settings, ts_file, runner)

        assert runner.commands("vcsi") == []
        assert result.contact_sheet is None


async def test_processing_twice_keeps_final_file(settings, runner, ts_file):
    first = await process_file(settings, ts_file, runner)
    content = first.media_path.read_bytes()

    second = await process_file(settings, first.media_path, runner)

    assert second.media_path == first.media_path
    assert first.media_path.read_bytes() == content
    assert len(runner.commands("ffmpeg")) == 1
    assert len(runner.commands("vcsi")) == 2


async def test_unknown_duration_is_not_an_error(settings, runner, ts_file):
    runner.outputs["ffprobe"] = (1, b"")

    result = await process_file(settings, ts_file, runner)

    assert result.media_path.exists()
