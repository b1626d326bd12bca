from datetime import datetime
from typing import Callable, Optional
from .alerts import AlertEmitter
from .config import Config, config as default_config
from .export import ExportAssembler
from .lifecycle import TripLifecycleManager, utc_now
from .schemas import ExportRecord, IngestResult, Sample, TripAggregate, TripHandle, TripSnapshot


class TelemetryEngine:
    """Entry point wiring the lifecycle manager, alert emitter and exporter to a store."""

    def __init__(self, store, cfg: Config = None, clock: Callable[[], datetime] = None):
        self.store = store
        self.config = cfg or default_config
        self.clock = clock or utc_now
        self.emitter = AlertEmitter(self.config, sinks=[store.append_alert])
        self.lifecycle = TripLifecycleManager(store, self.config, self.emitter, self.clock)
        self.exporter = ExportAssembler(self.lifecycle, store, self.config, self.clock)

    async def start_trip(
        self,
        user_id: str,
        vehicle_id: Optional[str] = None,
        nav_provider: Optional[str] = None,
        start_time: Optional[datetime] = None
    ) -> TripHandle:
        return await self.lifecycle.start_trip(user_id, vehicle_id, nav_provider, start_time)

    async def ingest_sample(self, trip_id: str, sample: Sample) -> IngestResult:
        return await self.lifecycle.ingest_sample(trip_id, sample)

    async def end_trip(self, trip_id: str) -> TripAggregate:
        return await self.lifecycle.end_trip(trip_id)

    async def get_trip(self, trip_id: str) -> TripSnapshot:
        return await self.lifecycle.snapshot(trip_id)

    async def export_trip(self, trip_id: str, insurance_provider: Optional[str] = None) -> ExportRecord:
        return await self.exporter.export_trip(trip_id, insurance_provider)
