"""Tests for the settings-driven factories."""

from datetime import timedelta
from zoneinfo import ZoneInfo

from cadence.core.settings import CadenceSettings
from cadence.scheduling import (
    FileMaintenanceMode,
    LoggingEventRecorder,
    MemoryLockStore,
    SQLiteLockStore,
    StaticMaintenanceMode,
    ThreadSchedulerBackend,
    create_lock_store,
    create_registry,
    create_scheduler,
)


class TestCreateRegistry:
    def test_timezone_and_default_maintenance(self):
        registry = create_registry(CadenceSettings(timezone="Europe/Berlin"))
        assert registry.timezone == ZoneInfo("Europe/Berlin")
        assert isinstance(registry.maintenance, StaticMaintenanceMode)
        assert registry.unique_names is False

    def test_maintenance_file(self, tmp_path):
        marker = tmp_path / "down"
        registry = create_registry(CadenceSettings(maintenance_file=marker), unique_names=True)
        assert isinstance(registry.maintenance, FileMaintenanceMode)
        assert registry.unique_names is True
        marker.touch()
        assert registry.maintenance.is_active()


class TestCreateLockStore:
    def test_memory_by_default(self):
        assert isinstance(create_lock_store(CadenceSettings()), MemoryLockStore)

    def test_sqlite(self, tmp_path):
        store = create_lock_store(CadenceSettings(lock_backend="sqlite", lock_database=tmp_path / "locks" / "l.db"))
        try:
            assert isinstance(store, SQLiteLockStore)
            assert (tmp_path / "locks" / "l.db").exists()
        finally:
            store.close()


class TestCreateScheduler:
    def test_wires_settings(self, registry, commands):
        settings = CadenceSettings(max_workers=2, lock_max_runtime_seconds=600, tick_interval_seconds=30)
        service = create_scheduler(registry, commands, settings=settings)

        assert service.registry is registry
        assert service.dispatcher.commands is commands
        assert service.dispatcher.max_workers == 2
        assert service.dispatcher.lock_manager.default_max_runtime == timedelta(minutes=10)
        assert isinstance(service.dispatcher.recorder, LoggingEventRecorder)
        assert service.dispatcher.output_router.mail_sink is None
        assert isinstance(service.backend, ThreadSchedulerBackend)
        assert service.interval == 30

    def test_mail_sink_when_configured(self, registry):
        service = create_scheduler(registry, settings=CadenceSettings(mail_host="smtp.example.com"))
        assert service.dispatcher.output_router.mail_sink is not None

    def test_explicit_collaborators_win(self, registry, recorder, lock_store):
        service = create_scheduler(registry, settings=CadenceSettings(), recorder=recorder, lock_store=lock_store)
        assert service.dispatcher.recorder is recorder
        assert service.dispatcher.lock_manager.store is lock_store
