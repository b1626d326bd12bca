from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from .models import UserProfile, Vehicle, InsurancePolicy, Trip, LocationSample, Alert, InsuranceExport
from .schemas import Alert as AlertEvent, Sample, TripAggregate, TripState
from .validation import normalize_timestamp


def _aware(ts: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    return normalize_timestamp(ts) if ts is not None else None


def _row_to_dict(row, exclude=("id",)) -> Dict[str, Any]:
    result = {}
    for column in row.__table__.columns:
        if column.name in exclude:
            continue
        value = getattr(row, column.name)
        if isinstance(value, datetime):
            value = _aware(value).isoformat()
        result[column.name] = value
    return result


def trip_to_dict(trip: Trip) -> Dict[str, Any]:
    """Convert a trip row into the plain dict the lifecycle manager rehydrates from."""
    return {
        "trip_id": trip.trip_id,
        "user_id": trip.user_id,
        "vehicle_id": trip.vehicle_id,
        "nav_provider": trip.nav_provider,
        "state": TripState(trip.state),
        "start_time": _aware(trip.start_time),
        "end_time": _aware(trip.end_time),
        "aggregate": TripAggregate(
            distance=trip.distance or 0.0,
            duration=trip.duration or 0,
            average_speed=trip.average_speed or 0.0,
            max_speed=trip.max_speed or 0.0,
            speed_violations=trip.speed_violations or 0,
            hard_braking=trip.hard_braking or 0,
            rapid_acceleration=trip.rapid_acceleration or 0,
            safety_score=trip.safety_score if trip.safety_score is not None else 100
        )
    }


def sample_from_row(row: LocationSample) -> Sample:
    return Sample(
        latitude=row.latitude,
        longitude=row.longitude,
        speed=row.speed,
        speed_limit=row.speed_limit,
        timestamp=_aware(row.timestamp)
    )


def alert_from_row(row: Alert) -> AlertEvent:
    return AlertEvent(
        alert_id=row.alert_id,
        kind=row.kind,
        message=row.message,
        trip_id=row.trip_id,
        user_id=row.user_id,
        created_at=_aware(row.created_at),
        is_read=bool(row.is_read),
        sequence=row.sequence
    )


def create_trip(
    db: Session,
    trip_id: str,
    user_id: str,
    vehicle_id: Optional[str],
    nav_provider: Optional[str],
    start_time: datetime,
    state: TripState,
    aggregate: TripAggregate
) -> Trip:
    """Persist a new trip record."""
    trip = Trip(
        trip_id=trip_id,
        user_id=user_id,
        vehicle_id=vehicle_id,
        nav_provider=nav_provider,
        state=state.value,
        start_time=start_time,
        end_time=None,
        **aggregate.model_dump()
    )
    db.add(trip)
    db.commit()
    db.refresh(trip)
    return trip


def update_trip(
    db: Session,
    trip_id: str,
    state: TripState,
    end_time: Optional[datetime],
    aggregate: TripAggregate
) -> bool:
    """Write state and aggregate unless the stored aggregate is already newer.

    Duration grows by one per aggregated sample, so it orders aggregate writes.
    """
    values = {"state": state.value, "end_time": end_time, **aggregate.model_dump()}
    updated = db.query(Trip).filter(
        Trip.trip_id == trip_id,
        Trip.duration <= aggregate.duration
    ).update(values, synchronize_session=False)
    db.commit()
    return updated > 0


def append_sample(db: Session, trip_id: str, sequence: int, sample: Sample) -> LocationSample:
    row = LocationSample(
        trip_id=trip_id,
        sequence=sequence,
        latitude=sample.latitude,
        longitude=sample.longitude,
        speed=sample.speed,
        speed_limit=sample.speed_limit,
        timestamp=sample.timestamp
    )
    db.add(row)
    db.commit()
    return row


def append_alert(db: Session, alert: AlertEvent) -> Alert:
    row = Alert(
        alert_id=alert.alert_id,
        user_id=alert.user_id,
        trip_id=alert.trip_id,
        kind=alert.kind,
        message=alert.message,
        created_at=alert.created_at,
        is_read=alert.is_read,
        sequence=alert.sequence
    )
    db.add(row)
    db.commit()
    return row


class SqlTripStore:
    """Trip/profile store backed by SQLAlchemy sessions.

    This is the external store the telemetry core talks to: it persists trips,
    aggregates, samples, alerts and exports and serves profile, vehicle and
    insurance records by user id. Every method opens its own short session.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    # Trips

    def create_trip(self, trip_id, user_id, vehicle_id, nav_provider, start_time, state, aggregate):
        with self.session_factory() as db:
            create_trip(db, trip_id, user_id, vehicle_id, nav_provider, start_time, state, aggregate)

    def save_trip(self, trip_id: str, state: TripState, end_time: Optional[datetime], aggregate: TripAggregate) -> bool:
        with self.session_factory() as db:
            return update_trip(db, trip_id, state, end_time, aggregate)

    def get_trip(self, trip_id: str) -> Optional[Dict[str, Any]]:
        with self.session_factory() as db:
            trip = db.query(Trip).filter(Trip.trip_id == trip_id).first()
            return trip_to_dict(trip) if trip else None

    def find_active_trip(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self.session_factory() as db:
            trip = db.query(Trip).filter(
                Trip.user_id == user_id,
                Trip.state == TripState.ACTIVE.value
            ).order_by(Trip.id.desc()).first()
            return trip_to_dict(trip) if trip else None

    def list_user_trips(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 10,
        active: Optional[bool] = None
    ) -> Dict[str, Any]:
        """Paginated trips for a user, newest first."""
        with self.session_factory() as db:
            query = db.query(Trip).filter(Trip.user_id == user_id)
            if active is not None:
                if active:
                    query = query.filter(Trip.state == TripState.ACTIVE.value)
                else:
                    query = query.filter(Trip.state != TripState.ACTIVE.value)

            total = query.count()
            trips = query.order_by(Trip.id.desc()).offset((page - 1) * limit).limit(limit).all()
            return {
                "trips": [trip_to_dict(trip) for trip in trips],
                "pagination": {
                    "page": page,
                    "limit": limit,
                    "total": total,
                    "pages": (total + limit - 1) // limit
                }
            }

    # Samples

    def append_sample(self, trip_id: str, sequence: int, sample: Sample):
        with self.session_factory() as db:
            append_sample(db, trip_id, sequence, sample)

    def list_samples(self, trip_id: str, up_to_sequence: Optional[int] = None) -> List[Sample]:
        with self.session_factory() as db:
            query = db.query(LocationSample).filter(LocationSample.trip_id == trip_id)
            if up_to_sequence is not None:
                query = query.filter(LocationSample.sequence <= up_to_sequence)
            return [sample_from_row(row) for row in query.order_by(LocationSample.sequence).all()]

    def last_sample(self, trip_id: str) -> Optional[Sample]:
        with self.session_factory() as db:
            row = db.query(LocationSample).filter(
                LocationSample.trip_id == trip_id
            ).order_by(LocationSample.sequence.desc()).first()
            return sample_from_row(row) if row else None

    # Alerts

    def append_alert(self, alert: AlertEvent):
        with self.session_factory() as db:
            append_alert(db, alert)

    def list_alerts(self, trip_id: str) -> List[AlertEvent]:
        with self.session_factory() as db:
            rows = db.query(Alert).filter(Alert.trip_id == trip_id).order_by(Alert.id).all()
            return [alert_from_row(row) for row in rows]

    def list_user_alerts(self, user_id: str, unread_only: bool = False, limit: int = 50) -> List[AlertEvent]:
        with self.session_factory() as db:
            query = db.query(Alert).filter(Alert.user_id == user_id)
            if unread_only:
                query = query.filter(Alert.is_read.is_(False))
            rows = query.order_by(Alert.id.desc()).limit(limit).all()
            return [alert_from_row(row) for row in rows]

    def mark_alert_read(self, alert_id: str) -> bool:
        with self.session_factory() as db:
            updated = db.query(Alert).filter(Alert.alert_id == alert_id).update(
                {"is_read": True}, synchronize_session=False
            )
            db.commit()
            return updated > 0

    # Profile context

    def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self.session_factory() as db:
            user = db.query(UserProfile).filter(UserProfile.external_id == user_id).first()
            return _row_to_dict(user) if user else None

    def list_vehicles(self, user_id: str) -> List[Dict[str, Any]]:
        with self.session_factory() as db:
            rows = db.query(Vehicle).filter(Vehicle.user_id == user_id).order_by(Vehicle.id).all()
            return [_row_to_dict(row) for row in rows]

    def list_insurance(self, user_id: str) -> List[Dict[str, Any]]:
        with self.session_factory() as db:
            rows = db.query(InsurancePolicy).filter(
                InsurancePolicy.user_id == user_id
            ).order_by(InsurancePolicy.id).all()
            return [_row_to_dict(row) for row in rows]

    # Exports

    def record_export(self, trip_id: str, user_id: str, insurance_provider: str, export_data: Dict, status: str) -> int:
        with self.session_factory() as db:
            row = InsuranceExport(
                user_id=user_id,
                trip_id=trip_id,
                insurance_provider=insurance_provider,
                export_data=export_data,
                status=status
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return row.id

    def count_exports(self, trip_id: str) -> int:
        with self.session_factory() as db:
            return db.query(func.count(InsuranceExport.id)).filter(InsuranceExport.trip_id == trip_id).scalar()
