"""Tests for SystemdManager against the fake transport"""

import asyncio
import signal

import pytest

from unitbus import manager as manager_module
from unitbus.exceptions import (
    InvalidModeError,
    SystemdNotAvailableError,
    TransportError,
    UnresolvedJobError,
)
from unitbus.manager import SystemdManager
from unitbus.models import JobMode, JobResult, Property
from unitbus.transport import DBusTransport

from conftest import FakeTransport, make_unit


JOB_METHODS = [
    ("start_unit", "StartUnit"),
    ("stop_unit", "StopUnit"),
    ("reload_unit", "ReloadUnit"),
    ("restart_unit", "RestartUnit"),
    ("try_restart_unit", "TryRestartUnit"),
    ("reload_or_restart_unit", "ReloadOrRestartUnit"),
    ("reload_or_try_restart_unit", "ReloadOrTryRestartUnit"),
]


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_connect_subscribes_and_close_unsubscribes(self, transport, manager_factory):
        manager = manager_factory(transport)

        async with manager:
            assert transport.connected
            assert manager.correlator.running
            assert [c[0] for c in transport.calls] == ["Subscribe"]

        assert [c[0] for c in transport.calls] == ["Subscribe", "Unsubscribe"]
        assert not transport.connected
        assert not manager.correlator.running

    @pytest.mark.asyncio
    async def test_failed_subscribe_closes_transport(self, transport, manager_factory):
        transport.fail_next("Subscribe", TransportError("Access denied"))
        manager = manager_factory(transport)

        with pytest.raises(TransportError):
            await manager.connect()

        assert not transport.connected
        assert not manager.correlator.running

    @pytest.mark.asyncio
    async def test_close_expires_pending_jobs(self, transport, manager_factory):
        manager = manager_factory(transport)

        async with manager:
            waiter = await manager.enqueue_job("StartUnit", "slow.service")

        with pytest.raises(UnresolvedJobError):
            await waiter.wait()

    def test_from_settings_without_systemd(self, settings, monkeypatch):
        monkeypatch.setattr(manager_module, "has_systemd", lambda user_mode: False)

        with pytest.raises(SystemdNotAvailableError):
            SystemdManager.from_settings(settings)

    @pytest.mark.asyncio
    async def test_from_settings_uses_bus_from_settings(self, settings, monkeypatch):
        monkeypatch.setattr(manager_module, "has_systemd", lambda user_mode: True)

        manager = SystemdManager.from_settings(settings.model_copy(update={"bus": "user"}))

        assert isinstance(manager.transport, DBusTransport)
        assert manager.transport.user_mode


class TestJobs:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method,member", JOB_METHODS)
    async def test_job_methods(self, method, member, auto_transport, manager_factory):
        async with manager_factory(auto_transport) as manager:
            result = await getattr(manager, method)("web.service", mode="fail")

        assert result is JobResult.DONE
        assert auto_transport.calls_to(member) == [(member, "ss", ["web.service", "fail"])]

    @pytest.mark.asyncio
    async def test_result_other_than_done(self, manager_factory):
        async with manager_factory(FakeTransport(auto_result="dependency")) as manager:
            result = await manager.start_unit("web.service")

        assert result is JobResult.DEPENDENCY
        assert not result.succeeded

    @pytest.mark.asyncio
    async def test_invalid_mode_makes_no_call(self, auto_transport, manager_factory):
        async with manager_factory(auto_transport) as manager:
            with pytest.raises(InvalidModeError):
                await manager.start_unit("web.service", mode="sometimes")

        assert auto_transport.calls_to("StartUnit") == []

    @pytest.mark.asyncio
    async def test_mode_accepts_enum(self, auto_transport, manager_factory):
        async with manager_factory(auto_transport) as manager:
            await manager.stop_unit("web.service", mode=JobMode.IGNORE_DEPENDENCIES)

        assert auto_transport.calls_to("StopUnit")[0][2] == ["web.service", "ignore-dependencies"]

    @pytest.mark.asyncio
    async def test_enqueue_job_rejects_unknown_method(self, connected_manager):
        with pytest.raises(ValueError):
            await connected_manager.enqueue_job("KillUnit", "web.service")

    @pytest.mark.asyncio
    async def test_default_job_timeout_from_settings(self, transport, manager_factory):
        async with manager_factory(transport, job_timeout=0.02) as manager:
            with pytest.raises(UnresolvedJobError):
                await manager.restart_unit("hung.service")

            assert manager.correlator.pending_count == 0

    @pytest.mark.asyncio
    async def test_rejected_job(self, transport, connected_manager):
        transport.fail_next("StartUnit", TransportError("Unit nope.service not found.",
                                                        error_name="org.freedesktop.systemd1.NoSuchUnit"))

        with pytest.raises(TransportError) as exc_info:
            await connected_manager.start_unit("nope.service")

        assert "NoSuchUnit" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_start_transient_unit(self, auto_transport, manager_factory):
        properties = [
            Property.description("One-off backup"),
            Property.exec_start(["/usr/bin/rsync", "-a", "/srv", "/backup"]),
        ]

        async with manager_factory(auto_transport) as manager:
            result = await manager.start_transient_unit("backup.service", properties=properties)

        assert result is JobResult.DONE
        member, signature, body = auto_transport.calls_to("StartTransientUnit")[0]
        assert signature == "ssa(sv)a(sa(sv))"
        assert body == ["backup.service", "replace", properties, []]

    @pytest.mark.asyncio
    async def test_kill_unit(self, transport, connected_manager):
        await connected_manager.kill_unit("web.service", signal.SIGHUP, who="main")

        assert transport.calls_to("KillUnit") == [("KillUnit", "ssi", ["web.service", "main", int(signal.SIGHUP)])]
        assert connected_manager.correlator.pending_count == 0


class TestUnits:

    @pytest.mark.asyncio
    async def test_list_units(self, transport, connected_manager):
        transport.units = [make_unit("a.service"), make_unit("b.timer", sub_state="waiting", job_id=4)]

        assert await connected_manager.list_units() == transport.units

    @pytest.mark.asyncio
    async def test_malformed_list_reply(self, transport, connected_manager):
        transport.reply_with("ListUnits", [[["too", "short"]]])

        with pytest.raises(TransportError):
            await connected_manager.list_units()

    @pytest.mark.asyncio
    async def test_subscribe_units(self, transport, manager_factory):
        transport.units = [make_unit("a.service")]
        manager = manager_factory(transport)

        async with manager:
            subscription = await manager.subscribe_units()
            first = await asyncio.wait_for(subscription.next_update(), 1)
            transport.units = [make_unit("a.service", active_state="failed", sub_state="failed")]
            changed = await asyncio.wait_for(subscription.next_update(), 1)
            while not changed:
                changed = await asyncio.wait_for(subscription.next_update(), 1)

        assert list(first) == ["a.service"]
        assert changed["a.service"].active_state == "failed"
        # close() stopped the subscription
        assert not subscription.running
        assert manager.subscriptions == []

    @pytest.mark.asyncio
    async def test_subscription_reports_fetch_errors(self, transport, connected_manager):
        subscription = await connected_manager.subscribe_units_custom(0.01, 5, lambda a, b: a == b)
        transport.fail_next("ListUnits", TransportError("Connection reset"))

        error = await asyncio.wait_for(subscription.next_error(), 1)

        assert "Connection reset" in str(error)
