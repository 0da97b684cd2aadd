"""Unit tests for link observation."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from switch_controller.events import LinkDown, LinkUp
from switch_controller.exceptions import TransportDownError
from switch_controller.network import AlwaysUpProbe, InterfaceProbe, LinkMonitor, build_probe
from switch_controller.structs import LinkState


def write_operstate(base: Path, iface: str, state: str) -> None:
    iface_dir = base / iface
    iface_dir.mkdir(parents=True, exist_ok=True)
    _ = (iface_dir / "operstate").write_text(f"{state}\n")


class TestInterfaceProbe:
    """Tests for InterfaceProbe."""

    @pytest.mark.parametrize("state", ["up", "unknown", "UP"])
    def test_usable_states_pass(self, tmp_path: Path, state: str):
        write_operstate(tmp_path, "eth0", state)

        InterfaceProbe("eth0", base_dir=tmp_path).check()

    @pytest.mark.parametrize("state", ["down", "dormant", "lowerlayerdown"])
    def test_down_states_raise(self, tmp_path: Path, state: str):
        write_operstate(tmp_path, "eth0", state)

        with pytest.raises(TransportDownError, match=f"operstate={state}"):
            InterfaceProbe("eth0", base_dir=tmp_path).check()

    def test_missing_interface_raises(self, tmp_path: Path):
        with pytest.raises(TransportDownError, match="wlan9 unavailable"):
            InterfaceProbe("wlan9", base_dir=tmp_path).check()


class TestBuildProbe:
    def test_without_interface(self):
        assert isinstance(build_probe(None), AlwaysUpProbe)

    def test_with_interface(self):
        probe = build_probe("eth0")

        assert isinstance(probe, InterfaceProbe)
        assert probe.operstate_path == Path("/sys/class/net/eth0/operstate")


class TestLinkMonitor:
    """Tests for LinkMonitor transition reporting."""

    def test_first_poll_always_posts(self):
        post = MagicMock()
        monitor = LinkMonitor(AlwaysUpProbe(), post)

        event = monitor.poll()

        assert event == LinkUp()
        post.assert_called_once_with(LinkUp())
        assert monitor.state is LinkState.UP

    def test_only_transitions_are_posted(self):
        probe = MagicMock()
        post = MagicMock()
        monitor = LinkMonitor(probe, post)

        _ = monitor.poll()
        _ = monitor.poll()
        probe.check.side_effect = TransportDownError("carrier lost")
        down = monitor.poll()
        _ = monitor.poll()
        probe.check.side_effect = None
        up = monitor.poll()

        assert down == LinkDown(reason="carrier lost")
        assert up == LinkUp()
        assert [c.args[0] for c in post.call_args_list] == [LinkUp(), LinkDown(reason="carrier lost"), LinkUp()]

    def test_interface_down_becomes_link_down(self, tmp_path: Path):
        write_operstate(tmp_path, "eth0", "down")
        post = MagicMock()
        monitor = LinkMonitor(InterfaceProbe("eth0", base_dir=tmp_path), post)

        event = monitor.poll()

        assert isinstance(event, LinkDown)
        assert "operstate=down" in event.reason
        assert monitor.state is LinkState.DOWN

    @pytest.mark.asyncio
    async def test_run_polls_until_cancelled(self):
        post = MagicMock()
        monitor = LinkMonitor(AlwaysUpProbe(), post, poll_seconds=0.01)

        task = asyncio.create_task(monitor.run())
        await asyncio.sleep(0.05)
        _ = task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        post.assert_called_once_with(LinkUp())
