"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from bolus_tracker.adapters.glucose_feed_client import HttpxGlucoseFeedClient
from bolus_tracker.adapters.json_document_repository import JsonDocumentRepository
from bolus_tracker.adapters.reminder_scheduler import LoggingReminderScheduler
from bolus_tracker.clock import resolve_timezone
from bolus_tracker.config import Settings
from bolus_tracker.services.backup import BackupManager
from bolus_tracker.services.glucose_sync import GlucoseSyncService
from bolus_tracker.services.stats import StatsAggregator
from bolus_tracker.services.store import DataStore


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    store: DataStore
    glucose_service: GlucoseSyncService
    catalog_path: Path
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    tz = resolve_timezone(resolved_settings.timezone)
    feed_client = HttpxGlucoseFeedClient.create(
        timeout_seconds=resolved_settings.glucose_timeout_seconds
    )
    glucose_service = GlucoseSyncService(
        client=feed_client,
        poll_interval_seconds=resolved_settings.glucose_poll_interval_seconds,
    )
    backup_manager = BackupManager(
        backup_dir=resolved_settings.backup_dir,
        tz=tz,
        keep=resolved_settings.auto_backup_keep,
        min_age=timedelta(hours=resolved_settings.auto_backup_min_age_hours),
    )
    store = DataStore(
        repository=JsonDocumentRepository(resolved_settings.store_path),
        glucose_service=glucose_service,
        backup_manager=backup_manager,
        reminder_scheduler=LoggingReminderScheduler(),
        stats_aggregator=StatsAggregator(tz),
        tz=tz,
    )

    async def close_resources() -> None:
        await glucose_service.stop_polling()
        await feed_client.close()

    return AppContainer(
        settings=resolved_settings,
        store=store,
        glucose_service=glucose_service,
        catalog_path=resolved_settings.resolved_catalog_path,
        close_resources=close_resources,
    )
