import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Optional
from .aggregation import TripAggregator
from .alerts import AlertEmitter
from .config import Config, config as default_config
from .detection import ViolationDetector
from .errors import InvalidState, InvalidValue, NotFound, OutOfOrder, ValidationError
from .schemas import IngestResult, Sample, TripAggregate, TripHandle, TripSnapshot, TripState
from .scoring import SafetyScorer
from .validation import SampleValidator, normalize_timestamp

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_trip_id(now: datetime) -> str:
    return f"trip_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass
class TripRecord:
    """In-memory state of one trip, guarded by its own lock."""
    trip_id: str
    user_id: str
    vehicle_id: Optional[str]
    nav_provider: Optional[str]
    start_time: datetime
    state: TripState
    aggregate: TripAggregate
    end_time: Optional[datetime] = None
    last_speed: Optional[float] = None
    last_timestamp: Optional[datetime] = None
    samples_since_alert: Optional[int] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def snapshot(self) -> TripSnapshot:
        return TripSnapshot(
            trip_id=self.trip_id,
            user_id=self.user_id,
            vehicle_id=self.vehicle_id,
            nav_provider=self.nav_provider,
            start_time=self.start_time,
            end_time=self.end_time,
            state=self.state,
            aggregate=self.aggregate
        )

    def handle(self, already_active: bool = False) -> TripHandle:
        return TripHandle(
            trip_id=self.trip_id,
            user_id=self.user_id,
            vehicle_id=self.vehicle_id,
            nav_provider=self.nav_provider,
            start_time=self.start_time,
            state=self.state,
            already_active=already_active
        )


class TripLifecycleManager:
    """Owns the Pending -> Active -> Ended state machine of every trip.

    Trips live in an arena keyed by trip id. Each record carries its own
    asyncio.Lock, so sample ingestion and end-trip for one trip are serialized
    while different trips proceed independently. asyncio.Lock wakes waiters in
    FIFO order: a sample that reached the lock before an end request is
    aggregated before the trip ends.

    Store writes happen after the in-memory update has left the critical
    section; the arena is authoritative and failed writes are logged.
    """

    def __init__(
        self,
        store,
        cfg: Config = None,
        emitter: Optional[AlertEmitter] = None,
        clock: Callable[[], datetime] = None
    ):
        self.store = store
        self.config = cfg or default_config
        self.clock = clock or utc_now
        self.validator = SampleValidator()
        self.aggregator = TripAggregator(self.config)
        self.detector = ViolationDetector(self.config)
        self.scorer = SafetyScorer(self.config)
        self.emitter = emitter or AlertEmitter(self.config)

        self.trips: Dict[str, TripRecord] = {}
        # user id -> trip id of the user's Pending or Active trip
        self.open_trips: Dict[str, str] = {}

    # Lookup

    def _resolve(self, trip_id: str) -> TripRecord:
        """Return the arena record, rehydrating it from the store if needed."""
        record = self.trips.get(trip_id)
        if record is not None:
            return record

        stored = self.store.get_trip(trip_id)
        if stored is None:
            raise NotFound(f"trip {trip_id} not found", {"trip_id": trip_id})
        return self._hydrate(stored)

    def _hydrate(self, stored: dict) -> TripRecord:
        last = self.store.last_sample(stored["trip_id"])
        since_alert = self._samples_since_alert(stored["trip_id"], stored["aggregate"].duration)
        record = TripRecord(
            trip_id=stored["trip_id"],
            user_id=stored["user_id"],
            vehicle_id=stored["vehicle_id"],
            nav_provider=stored["nav_provider"],
            start_time=stored["start_time"],
            state=stored["state"],
            aggregate=stored["aggregate"],
            end_time=stored["end_time"],
            last_speed=last.speed if last else None,
            last_timestamp=last.timestamp if last else None,
            samples_since_alert=since_alert
        )
        # Another coroutine may have hydrated it first
        record = self.trips.setdefault(record.trip_id, record)
        if record.state != TripState.ENDED:
            self.open_trips.setdefault(record.user_id, record.trip_id)
        logger.info(f"Rehydrated trip {record.trip_id} ({record.state.value}) from store")
        return record

    def _samples_since_alert(self, trip_id: str, duration: int) -> Optional[int]:
        sequences = [a.sequence for a in self.store.list_alerts(trip_id) if a.sequence is not None]
        if not sequences:
            return None
        return duration - max(sequences)

    def _open_trip_for(self, user_id: str) -> Optional[TripRecord]:
        trip_id = self.open_trips.get(user_id)
        if trip_id is not None:
            record = self.trips.get(trip_id)
            if record is not None and record.state != TripState.ENDED:
                return record
            self.open_trips.pop(user_id, None)

        stored = self.store.find_active_trip(user_id)
        if stored is None:
            return None
        record = self.trips.get(stored["trip_id"])
        if record is None:
            return self._hydrate(stored)
        if record.state == TripState.ENDED:
            # the store missed the end of this trip
            self._persist(record.trip_id, record.state, record.end_time, record.aggregate)
            return None
        return record

    def _persist(self, record_id: str, state: TripState, end_time, aggregate: TripAggregate):
        try:
            self.store.save_trip(record_id, state, end_time, aggregate)
        except Exception:
            logger.exception(f"Failed to persist trip {record_id}")

    # Trip lifecycle

    @staticmethod
    def _check_start_request(user_id, vehicle_id, nav_provider, start_time):
        if not isinstance(user_id, str) or not user_id.strip():
            raise ValidationError("user_id is required", {"field": "user_id"})
        if vehicle_id is not None and (not isinstance(vehicle_id, str) or not vehicle_id.strip()):
            raise ValidationError("vehicle_id must be a non-empty string", {"field": "vehicle_id"})
        if nav_provider is not None and (not isinstance(nav_provider, str) or not nav_provider.strip()):
            raise ValidationError("nav_provider must be a non-empty string", {"field": "nav_provider"})
        if start_time is not None and not isinstance(start_time, datetime):
            raise ValidationError("start_time must be a datetime", {"field": "start_time"})

    async def register_trip(
        self,
        user_id: str,
        vehicle_id: Optional[str] = None,
        nav_provider: Optional[str] = None,
        start_time: Optional[datetime] = None
    ) -> TripHandle:
        """Create a Pending trip record."""
        self._check_start_request(user_id, vehicle_id, nav_provider, start_time)
        start_time = normalize_timestamp(start_time) if start_time else self.clock()

        record = TripRecord(
            trip_id=new_trip_id(self.clock()),
            user_id=user_id,
            vehicle_id=vehicle_id,
            nav_provider=nav_provider,
            start_time=start_time,
            state=TripState.PENDING,
            aggregate=TripAggregate(safety_score=self.scorer.initial_score())
        )
        self.store.create_trip(
            record.trip_id, user_id, vehicle_id, nav_provider, start_time, record.state, record.aggregate
        )
        self.trips[record.trip_id] = record
        self.open_trips[user_id] = record.trip_id
        logger.info(f"Registered trip {record.trip_id} for user {user_id}")
        return record.handle()

    async def activate_trip(self, trip_id: str) -> TripHandle:
        """Confirm a Pending trip; confirming an Active trip is a no-op."""
        record = self._resolve(trip_id)
        async with record.lock:
            if record.state == TripState.ACTIVE:
                return record.handle(already_active=True)
            if record.state == TripState.ENDED:
                raise InvalidState(
                    f"trip {trip_id} has already ended",
                    {"trip_id": trip_id, "state": record.state.value}
                )
            record.state = TripState.ACTIVE
            handle = record.handle()
            aggregate = record.aggregate

        self._persist(trip_id, TripState.ACTIVE, None, aggregate)
        logger.info(f"Trip {trip_id} is active")
        return handle

    async def start_trip(
        self,
        user_id: str,
        vehicle_id: Optional[str] = None,
        nav_provider: Optional[str] = None,
        start_time: Optional[datetime] = None
    ) -> TripHandle:
        """Start a trip, or return the user's existing open trip."""
        self._check_start_request(user_id, vehicle_id, nav_provider, start_time)

        existing = self._open_trip_for(user_id)
        if existing is not None:
            if existing.state == TripState.ACTIVE:
                logger.info(f"User {user_id} already has active trip {existing.trip_id}")
                return existing.handle(already_active=True)
            return await self.activate_trip(existing.trip_id)

        handle = await self.register_trip(user_id, vehicle_id, nav_provider, start_time)
        return await self.activate_trip(handle.trip_id)

    async def ingest_sample(self, trip_id: str, sample: Sample) -> IngestResult:
        """Validate, aggregate, classify, score and alert on one sample."""
        record = self._resolve(trip_id)
        if sample.timestamp is None:
            sample = sample.model_copy(update={"timestamp": self.clock()})

        async with record.lock:
            if record.state != TripState.ACTIVE:
                raise InvalidState(
                    f"trip {trip_id} is not accepting samples",
                    {"trip_id": trip_id, "state": record.state.value}
                )

            try:
                accepted = self.validator.validate(trip_id, sample, record.last_timestamp)
            except (InvalidValue, OutOfOrder) as exc:
                logger.warning(f"Rejected sample for trip {trip_id}: {exc.kind} {exc.context}")
                raise

            aggregate = self.aggregator.apply_sample(record.aggregate, accepted)
            violations = self.detector.detect(trip_id, accepted, record.last_speed)
            aggregate = self.aggregator.apply_violations(aggregate, violations)
            aggregate = self.scorer.rescore(aggregate)

            since_alert = None if record.samples_since_alert is None else record.samples_since_alert + 1
            alert = self.emitter.evaluate(
                trip_id, record.user_id, violations, self.clock(), since_alert, aggregate.duration
            )

            record.aggregate = aggregate
            record.last_speed = accepted.speed
            record.last_timestamp = accepted.timestamp
            record.samples_since_alert = 0 if alert is not None else since_alert
            state, end_time = record.state, record.end_time

        try:
            self.store.append_sample(trip_id, aggregate.duration, accepted)
        except Exception:
            logger.exception(f"Failed to persist sample {aggregate.duration} of trip {trip_id}")
        self._persist(trip_id, state, end_time, aggregate)

        if alert is not None:
            await self.emitter.publish(alert)

        return IngestResult(trip_id=trip_id, aggregate=aggregate, violations=violations, alert=alert)

    async def end_trip(self, trip_id: str) -> TripAggregate:
        """End an Active trip; ending an Ended trip returns its frozen aggregate."""
        record = self._resolve(trip_id)
        async with record.lock:
            if record.state == TripState.ENDED:
                return record.aggregate
            if record.state == TripState.PENDING:
                raise InvalidState(
                    f"trip {trip_id} was never started",
                    {"trip_id": trip_id, "state": record.state.value}
                )
            record.state = TripState.ENDED
            record.end_time = self.clock()
            aggregate, end_time = record.aggregate, record.end_time

        if self.open_trips.get(record.user_id) == trip_id:
            del self.open_trips[record.user_id]
        self._persist(trip_id, TripState.ENDED, end_time, aggregate)
        logger.info(
            f"Trip {trip_id} ended: {aggregate.duration} samples, "
            f"{aggregate.distance:.2f} distance, score {aggregate.safety_score}"
        )
        return aggregate

    async def snapshot(self, trip_id: str) -> TripSnapshot:
        """Consistent point-in-time copy of a trip, taken under its lock."""
        record = self._resolve(trip_id)
        async with record.lock:
            return record.snapshot()
