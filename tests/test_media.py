"""Tests for fire-and-forget process spawning."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from streambot.media import SoundPlayer, spawn_detached


def test_build_command_replaces_placeholder():
    player = SoundPlayer(["mpv", "{file}", "--really-quiet"])
    assert player.build_command(Path("/a/raid.ogg")) == ["mpv", "/a/raid.ogg", "--really-quiet"]


def test_build_command_appends_without_placeholder():
    player = SoundPlayer(["paplay"])
    assert player.build_command(Path("/a/raid.ogg")) == ["paplay", "/a/raid.ogg"]


@pytest.mark.asyncio
async def test_spawn_missing_program_returns_none():
    with patch(
        "streambot.media.asyncio.create_subprocess_exec",
        AsyncMock(side_effect=FileNotFoundError("no such file")),
    ):
        assert await spawn_detached(["definitely-not-a-player"]) is None


@pytest.mark.asyncio
async def test_spawn_empty_command_returns_none():
    assert await spawn_detached([]) is None


@pytest.mark.asyncio
async def test_spawn_does_not_wait_for_exit():
    process = MagicMock()
    process.pid = 1234
    finished = asyncio.Event()

    async def wait():
        await finished.wait()
        return 0

    process.wait = wait
    with patch(
        "streambot.media.asyncio.create_subprocess_exec",
        AsyncMock(return_value=process),
    ) as create:
        result = await asyncio.wait_for(spawn_detached(["mpv", "x.ogg"]), 1.0)

    assert result is process
    assert create.await_args.args == ("mpv", "x.ogg")
    finished.set()
    await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_play_reports_spawn_failure():
    player = SoundPlayer(["mpv", "{file}"])
    with patch("streambot.media.spawn_detached", AsyncMock(return_value=None)):
        assert await player.play(Path("/a/host.ogg")) is False


@pytest.mark.asyncio
async def test_play_spawns_player():
    player = SoundPlayer(["mpv", "{file}"])
    with patch("streambot.media.spawn_detached", AsyncMock(return_value=MagicMock())) as spawn:
        assert await player.play(Path("/a/host.ogg")) is True
    spawn.assert_awaited_once_with(["mpv", "/a/host.ogg"])
