"""Tests for qbridge.session.supervisor (LifecycleSupervisor)."""

from __future__ import annotations

import asyncio
import signal
from unittest.mock import MagicMock, patch

import pytest

from qbridge.session.registry import SessionRegistry, SessionStatus
from qbridge.session.supervisor import LifecycleSupervisor
from qbridge.session.wire import Wire

from conftest import FakeAdapter


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


# ---------------------------------------------------------------------------
# shutdown_all
# ---------------------------------------------------------------------------


class TestShutdownAll:
    def test_signals_every_session_and_clears(self, registry: SessionRegistry) -> None:
        adapters = [FakeAdapter() for _ in range(3)]
        for a in adapters:
            registry.create(a)

        supervisor = LifecycleSupervisor(registry)
        signalled = supervisor.shutdown_all()

        assert len(signalled) == 3
        assert all(a.kills == [signal.SIGTERM] for a in adapters)
        assert len(registry) == 0
        assert all(s.status == SessionStatus.EXITED for s in signalled)

    def test_second_call_is_noop(self, registry: SessionRegistry) -> None:
        adapters = [FakeAdapter() for _ in range(3)]
        for a in adapters:
            registry.create(a)
        supervisor = LifecycleSupervisor(registry)
        supervisor.shutdown_all()
        assert supervisor.shutdown_all() == []
        assert all(len(a.kills) == 1 for a in adapters)

    def test_failing_kill_does_not_stop_others(self, registry: SessionRegistry) -> None:
        broken = FakeAdapter()
        broken.kill = MagicMock(side_effect=OSError("gone"))  # type: ignore[method-assign]
        healthy = FakeAdapter()
        registry.create(broken)
        registry.create(healthy)

        LifecycleSupervisor(registry).shutdown_all()
        assert healthy.kills == [signal.SIGTERM]
        assert len(registry) == 0


class TestShutdownAndWait:
    async def test_no_escalation_when_children_exit(
        self, registry: SessionRegistry
    ) -> None:
        adapter = FakeAdapter(exit_on_kill=True)
        registry.create(adapter)
        await LifecycleSupervisor(registry).shutdown_and_wait(grace=1.0)
        assert adapter.kills == [signal.SIGTERM]

    async def test_escalates_to_sigkill(self, registry: SessionRegistry) -> None:
        stubborn = FakeAdapter()
        polite = FakeAdapter(exit_on_kill=True)
        registry.create(stubborn)
        registry.create(polite)
        await LifecycleSupervisor(registry).shutdown_and_wait(grace=0.05)
        assert stubborn.kills == [signal.SIGTERM, signal.SIGKILL]
        assert polite.kills == [signal.SIGTERM]

    async def test_empty_registry(self, registry: SessionRegistry) -> None:
        await LifecycleSupervisor(registry).shutdown_and_wait(grace=0.01)


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------


class TestTriggers:
    def test_request_close(self, registry: SessionRegistry) -> None:
        adapter = FakeAdapter()
        registry.create(adapter)
        wire = Wire()
        q = wire.attach()
        LifecycleSupervisor(registry, wire).request_close()
        assert adapter.kills == [signal.SIGTERM]
        assert len(registry) == 0
        assert q.get_nowait() is None
        assert wire.send_docker_warning("late") is False

    def test_surface_closed_waits_for_last(self, registry: SessionRegistry) -> None:
        adapter = FakeAdapter()
        registry.create(adapter)
        wire = Wire()
        wire.attach()
        supervisor = LifecycleSupervisor(registry, wire)

        supervisor.surface_closed(remaining=1)
        assert adapter.kills == []
        assert wire.has_consumer

        supervisor.surface_closed(remaining=0)
        assert adapter.kills == [signal.SIGTERM]
        assert not wire.has_consumer

    def test_exit_hooks_register_atexit(self, registry: SessionRegistry) -> None:
        supervisor = LifecycleSupervisor(registry)
        with patch("qbridge.session.supervisor.atexit") as atexit_mock:
            supervisor.install_exit_hooks()
            supervisor.install_exit_hooks()
            atexit_mock.register.assert_called_once_with(supervisor.shutdown_all)
            supervisor.uninstall_exit_hooks()
            atexit_mock.unregister.assert_called_once_with(supervisor.shutdown_all)

    async def test_exit_hooks_install_signal_handlers(
        self, registry: SessionRegistry
    ) -> None:
        loop = MagicMock(spec=asyncio.AbstractEventLoop)
        supervisor = LifecycleSupervisor(registry)
        with patch("qbridge.session.supervisor.atexit"):
            supervisor.install_exit_hooks(loop)
        installed = {call.args[0] for call in loop.add_signal_handler.call_args_list}
        assert signal.SIGTERM in installed

    def test_signal_handler_converges_on_shutdown(
        self, registry: SessionRegistry
    ) -> None:
        adapter = FakeAdapter()
        registry.create(adapter)
        wire = Wire()
        wire.attach()
        LifecycleSupervisor(registry, wire)._on_signal("SIGTERM")
        assert adapter.kills == [signal.SIGTERM]
        assert len(registry) == 0
        assert not wire.has_consumer
