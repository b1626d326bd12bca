import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from .config import Config, config as default_config
from .lifecycle import TripLifecycleManager, utc_now
from .schemas import ExportRecord

logger = logging.getLogger(__name__)

EXPORT_STATUS_SENT = "sent"


def pick_vehicle(vehicle_id: Optional[str], vehicles: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """The trip's own vehicle when it is on file, otherwise the user's first vehicle."""
    if vehicle_id is not None:
        for vehicle in vehicles:
            if vehicle.get("external_id") == vehicle_id:
                return vehicle
    return vehicles[0] if vehicles else None


def first_record(records: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    return records[0] if records else None


class ExportAssembler:
    """Builds the insurance export for a trip.

    The trip part comes from a snapshot taken under the trip's lock; sample
    history is cut at the snapshot's duration so it matches the aggregate even
    while the trip is still ingesting.
    """

    def __init__(
        self,
        lifecycle: TripLifecycleManager,
        store,
        cfg: Config = None,
        clock: Callable[[], datetime] = None
    ):
        self.lifecycle = lifecycle
        self.store = store
        self.config = cfg or default_config
        self.clock = clock or utc_now

    async def export_trip(self, trip_id: str, insurance_provider: Optional[str] = None) -> ExportRecord:
        snapshot = await self.lifecycle.snapshot(trip_id)
        provider = insurance_provider or self.config.default_insurance_provider

        alerts = self.store.list_alerts(trip_id)
        samples = self.store.list_samples(trip_id, up_to_sequence=snapshot.aggregate.duration)
        profile = self.store.get_profile(snapshot.user_id)
        vehicle = pick_vehicle(snapshot.vehicle_id, self.store.list_vehicles(snapshot.user_id))
        insurance = first_record(self.store.list_insurance(snapshot.user_id))

        record = ExportRecord(
            trip_id=snapshot.trip_id,
            user_id=snapshot.user_id,
            start_time=snapshot.start_time,
            end_time=snapshot.end_time,
            state=snapshot.state,
            nav_provider=snapshot.nav_provider,
            insurance_provider=provider,
            aggregate=snapshot.aggregate,
            alerts=alerts,
            samples=samples,
            profile=profile,
            vehicle=vehicle,
            insurance=insurance,
            exported_at=self.clock(),
            status=EXPORT_STATUS_SENT
        )

        export_id = self.store.record_export(
            trip_id, snapshot.user_id, provider, record.model_dump(mode="json"), record.status
        )
        logger.info(
            f"Exported trip {trip_id} ({snapshot.state.value}) to {provider}: "
            f"{len(samples)} samples, {len(alerts)} alerts, export #{export_id}"
        )
        return record.model_copy(update={"export_id": export_id})
