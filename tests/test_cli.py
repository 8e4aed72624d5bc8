"""Tests for the switcher command-line tool."""

from __future__ import annotations

import json

import pytest

from conftest import DEVICE_ID, DEVICE_NAME, FakeSwitcher
from switcher_protocol import __version__
from switcher_protocol.__main__ import arun
from switcher_protocol.switcher_frame import OPCODE_CONTROL, OPCODE_LOGIN

ENV_VARS = (
    "SWITCHER_DEVICE_ID",
    "SWITCHER_ADDRESS",
    "SWITCHER_PORT",
    "SWITCHER_UDP_PORT",
    "SWITCHER_BIND_ADDRESS",
    "SWITCHER_PHONE_ID",
    "SWITCHER_DEVICE_PASSWORD",
    "SWITCHER_COMMAND_TIMEOUT",
    "SWITCHER_INVALIDATE_TOKEN",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove any device configuration from the environment."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestCommandLine:
    """Tests for the CLI entry point."""

    @pytest.mark.asyncio
    async def test_version(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test the version command prints the package version."""
        rc = await arun(["version"])
        assert rc == 0
        assert capsys.readouterr().out.strip() == __version__

    @pytest.mark.asyncio
    async def test_no_command(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test running without a command fails."""
        rc = await arun([])
        assert rc == 1
        assert "A command is required" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_missing_device_id(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test device commands fail cleanly without a device id."""
        rc = await arun(["status"])
        assert rc == 1
        assert "No device id specified" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_status(
        self,
        fake_switcher: FakeSwitcher,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Test the status command prints the decoded status as JSON."""
        monkeypatch.setenv("SWITCHER_PORT", str(fake_switcher.port))
        rc = await arun(["--device-id", DEVICE_ID, "--address", "127.0.0.1", "status"])
        assert rc == 0
        result = json.loads(capsys.readouterr().out)
        assert result["name"] == DEVICE_NAME
        assert result["device_id"] == DEVICE_ID
        assert result["state"] == "ON"
        assert result["default_shutdown_seconds"] == 7200

    @pytest.mark.asyncio
    async def test_on_with_minutes(
        self,
        fake_switcher: FakeSwitcher,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Test the on command sends a timed power-on."""
        monkeypatch.setenv("SWITCHER_DEVICE_ID", DEVICE_ID)
        monkeypatch.setenv("SWITCHER_ADDRESS", "127.0.0.1")
        monkeypatch.setenv("SWITCHER_PORT", str(fake_switcher.port))
        rc = await arun(["on", "--minutes", "15"])
        assert rc == 0
        result = json.loads(capsys.readouterr().out)
        assert result == {"device_id": DEVICE_ID, "state": "ON", "duration_minutes": 15}
        assert fake_switcher.opcodes == [OPCODE_LOGIN, OPCODE_CONTROL]
        assert fake_switcher.frames[-1][-8:-4] == (15 * 60).to_bytes(4, "little")

    @pytest.mark.asyncio
    async def test_set_shutdown(
        self,
        fake_switcher: FakeSwitcher,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Test the set-shutdown command prints the clamped value."""
        monkeypatch.setenv("SWITCHER_PORT", str(fake_switcher.port))
        rc = await arun(
            ["--device-id", DEVICE_ID, "--address", "127.0.0.1", "set-shutdown", "--seconds", "60"]
        )
        assert rc == 0
        result = json.loads(capsys.readouterr().out)
        assert result["default_shutdown_seconds"] == 3600

    @pytest.mark.asyncio
    async def test_connection_refused(
        self,
        unused_tcp_port_number: int,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Test a connection failure exits with an error message."""
        monkeypatch.setenv("SWITCHER_PORT", str(unused_tcp_port_number))
        rc = await arun(["--device-id", DEVICE_ID, "--address", "127.0.0.1", "off"])
        assert rc == 1
        assert "failed to connect to switcher" in capsys.readouterr().err
