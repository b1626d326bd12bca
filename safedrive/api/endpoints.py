from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from typing import Any, Dict, List, Optional
from ..errors import TelemetryError, ValidationError, NotFound, InvalidState, OutOfOrder
from ..schemas import ExportRequest, Sample, StartTripRequest

router = APIRouter()

ERROR_STATUS = [
    (ValidationError, 400),
    (NotFound, 404),
    (InvalidState, 409),
    (OutOfOrder, 409),
]

def _http_error(exc: TelemetryError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.to_dict())
    return HTTPException(status_code=500, detail=exc.to_dict())

def _engine(request: Request):
    return request.app.state.engine

@router.post("/trips/start")
async def start_trip(body: StartTripRequest, request: Request):
    """Start a trip, or return the user's trip that is already active."""
    try:
        handle = await _engine(request).start_trip(
            body.user_id, body.vehicle_id, body.nav_provider, body.start_time
        )
    except TelemetryError as e:
        raise _http_error(e)

    status_code = 200 if handle.already_active else 201
    return JSONResponse(status_code=status_code, content=handle.model_dump(mode="json"))

@router.post("/trips/{trip_id}/location", status_code=201)
async def add_location(trip_id: str, sample: Sample, request: Request) -> Dict[str, Any]:
    """Ingest one telemetry sample for a trip."""
    try:
        result = await _engine(request).ingest_sample(trip_id, sample)
    except TelemetryError as e:
        raise _http_error(e)
    await request.app.state.manager.broadcast_update(result)
    return result.model_dump(mode="json")

@router.post("/trips/{trip_id}/end")
async def end_trip(trip_id: str, request: Request) -> Dict[str, Any]:
    """End a trip; repeated calls return the same final aggregate."""
    try:
        aggregate = await _engine(request).end_trip(trip_id)
    except TelemetryError as e:
        raise _http_error(e)
    return {"trip_id": trip_id, "aggregate": aggregate.model_dump(mode="json")}

@router.post("/trips/{trip_id}/export")
async def export_trip(trip_id: str, request: Request, body: Optional[ExportRequest] = None) -> Dict[str, Any]:
    """Export trip data for an insurance provider."""
    provider = body.insurance_provider if body else None
    try:
        record = await _engine(request).export_trip(trip_id, provider)
    except TelemetryError as e:
        raise _http_error(e)
    return {
        "message": "Trip data exported successfully",
        "export_id": record.export_id,
        "export_data": record.model_dump(mode="json")
    }

@router.get("/trips/user/{user_id}")
def get_user_trips(
    user_id: str,
    request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    limit: Optional[int] = Query(None, ge=1, description="Trips per page"),
    active: Optional[bool] = Query(None, description="Filter by active state")
) -> Dict[str, Any]:
    """Get a user's trips, newest first."""
    engine = _engine(request)
    if limit is None:
        limit = engine.config.api_default_limit
    limit = min(limit, engine.config.api_max_limit)

    listing = engine.store.list_user_trips(user_id, page, limit, active)
    for trip in listing["trips"]:
        trip["state"] = trip["state"].value
        trip["start_time"] = trip["start_time"].isoformat() if trip["start_time"] else None
        trip["end_time"] = trip["end_time"].isoformat() if trip["end_time"] else None
        trip["aggregate"] = trip["aggregate"].model_dump(mode="json")
    return listing

@router.get("/trips/{trip_id}")
async def get_trip(trip_id: str, request: Request) -> Dict[str, Any]:
    """Get the current state and aggregate of a trip."""
    try:
        snapshot = await _engine(request).get_trip(trip_id)
    except TelemetryError as e:
        raise _http_error(e)
    return snapshot.model_dump(mode="json")

@router.get("/alerts/user/{user_id}")
def get_user_alerts(
    user_id: str,
    request: Request,
    unread_only: bool = Query(False, description="Only unread alerts"),
    limit: int = Query(50, ge=1, le=500, description="Number of alerts to return")
) -> List[Dict[str, Any]]:
    """Get recent alerts for a user."""
    alerts = _engine(request).store.list_user_alerts(user_id, unread_only, limit)
    return [alert.model_dump(mode="json") for alert in alerts]

@router.put("/alerts/{alert_id}/read")
def mark_alert_read(alert_id: str, request: Request) -> Dict[str, Any]:
    """Mark an alert as read."""
    if not _engine(request).store.mark_alert_read(alert_id):
        raise _http_error(NotFound(f"alert {alert_id} not found", {"alert_id": alert_id}))
    return {"alert_id": alert_id, "is_read": True}

@router.get("/config")
def get_config(request: Request) -> Dict[str, Any]:
    """Current detection and scoring configuration."""
    cfg = _engine(request).config
    return {"detection": cfg.get_detection_config(), "scoring": cfg.get_scoring_config()}
