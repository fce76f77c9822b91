"""Shared fixtures for twitch-scrapurr tests."""

import inspect
from pathlib import Path
from typing import Callable, Dict, List, Tuple

import pytest

from config import Settings


def write_output(path: str, data: bytes = b"\x47" * 188) -> None:
    Path(path).write_bytes(data)


def fake_ffmpeg(cmd: List[str]) -> int:
    """Pretend to remux: copy the input bytes to the output path."""
    if "-i" not in cmd:
        return 0
    src = Path(cmd[cmd.index("-i") + 1])
    Path(cmd[-1]).write_bytes(src.read_bytes())
    return 0


def fake_vcsi(cmd: List[str]) -> int:
    if "--output" not in cmd:
        return 0
    write_output(cmd[cmd.index("--output") + 1], b"\xff\xd8jpeg")
    return 0


class FakeRunner:
    """Process runner returning scripted outcomes instead of launching tools.

    Handlers are keyed by program name and receive the full command. They
    may return an exit status, an awaitable resolving to one, or raise
    OSError to simulate a launch failure. Unknown programs exit with 0.
    """

    def __init__(self):
        self.calls: List[List[str]] = []
        self.handlers: Dict[str, Callable] = {"ffmpeg": fake_ffmpeg, "vcsi": fake_vcsi}
        self.outputs: Dict[str, Tuple[int, bytes]] = {"ffprobe": (0, b"3725.5\n")}

    def on(self, program: str, handler: Callable) -> None:
        self.handlers[program] = handler

    async def run(self, cmd, quiet=False, timeout=None) -> int:
        self.calls.append(list(cmd))
        handler = self.handlers.get(cmd[0])
        if handler is None:
            return 0
        result = handler(list(cmd))
        if inspect.isawaitable(result):
            result = await result
        return result

    async def output(self, cmd) -> Tuple[int, bytes]:
        self.calls.append(list(cmd))
        return self.outputs.get(cmd[0], (1, b""))

    def commands(self, program: str) -> List[List[str]]:
        return [c for c in self.calls if c[0] == program]


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def make_settings(tmp_path) -> Callable[..., Settings]:
    def _make(**overrides) -> Settings:
        values = {
            "output_folder": str(tmp_path / "out"),
            "convert_to_mp4": True,
            "use_ffmpeg_convert": True,
            "generate_contact_sheet": True,
            "check_interval": 60,
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()
