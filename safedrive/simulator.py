import asyncio
import logging
import math
from typing import List, Optional
import pandas as pd
from .config import config
from .errors import TelemetryError
from .schemas import Sample, TripAggregate
from .wsmanager import ConnectionManager

logger = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3958.8

# Global state
RUNNING = False
current_task: Optional[asyncio.Task] = None

def calculate_distance(lat1, lon1, lat2, lon2):
    """Calculate distance between two GPS points in miles using Haversine formula."""
    lat1_rad = math.radians(lat1)
    lon1_rad = math.radians(lon1)
    lat2_rad = math.radians(lat2)
    lon2_rad = math.radians(lon2)

    dlat = lat2_rad - lat1_rad
    dlon = lon2_rad - lon1_rad

    a = math.sin(dlat/2)**2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon/2)**2
    c = 2 * math.asin(math.sqrt(a))

    return EARTH_RADIUS_MILES * c

def calculate_speed_mph(lat1, lon1, time1, lat2, lon2, time2):
    """Calculate speed in mph between two GPS points."""
    distance_miles = calculate_distance(lat1, lon1, lat2, lon2)
    time_diff_hours = (time2 - time1).total_seconds() / 3600

    # Avoid division by zero
    if time_diff_hours <= 0:
        return 0.0

    return distance_miles / time_diff_hours

def load_samples(csv_path: str, default_speed_limit: float = None) -> List[Sample]:
    """Read a CSV of GPS points into samples ordered by time.

    Required columns: latitude, longitude, time. Optional: speed (derived from
    consecutive points when absent) and speed_limit.
    """
    if default_speed_limit is None:
        default_speed_limit = config.replay_default_speed_limit

    df = pd.read_csv(csv_path)
    df['time'] = pd.to_datetime(df['time'], utc=True)
    df = df.sort_values('time').reset_index(drop=True)

    if 'speed' not in df.columns:
        speeds = [0.0]
        for i in range(1, len(df)):
            prev, row = df.iloc[i - 1], df.iloc[i]
            speeds.append(round(calculate_speed_mph(
                prev['latitude'], prev['longitude'], prev['time'],
                row['latitude'], row['longitude'], row['time']
            ), 1))
        df['speed'] = speeds

    if 'speed_limit' not in df.columns:
        df['speed_limit'] = default_speed_limit
    df['speed_limit'] = df['speed_limit'].fillna(default_speed_limit)

    return [
        Sample(
            latitude=float(row['latitude']),
            longitude=float(row['longitude']),
            speed=float(row['speed']),
            speed_limit=float(row['speed_limit']),
            timestamp=row['time'].to_pydatetime()
        )
        for _, row in df.iterrows()
    ]

async def start_replay(
    engine,
    manager: Optional[ConnectionManager] = None,
    csv_path: str = None,
    interval: float = None,
    user_id: str = "replay_user"
) -> Optional[TripAggregate]:
    """Replay a CSV of samples into a new trip and end it."""
    global RUNNING, current_task

    if RUNNING:
        logger.info("Replay already running")
        return None

    RUNNING = True

    if csv_path is None:
        csv_path = config.replay_csv
    if interval is None:
        interval = config.replay_interval_seconds

    logger.info(f"Starting replay of {csv_path} for {user_id} every {interval}s")

    try:
        current_task = asyncio.create_task(_run_replay(engine, manager, csv_path, interval, user_id))
        return await current_task
    except asyncio.CancelledError:
        logger.info("Replay cancelled")
        return None
    finally:
        RUNNING = False

def stop_replay():
    """Stop the running replay."""
    global RUNNING

    RUNNING = False

    if current_task and not current_task.done():
        current_task.cancel()

    return {"message": "replay stopped"}

def is_running():
    """Check if a replay is currently running."""
    return RUNNING

async def _run_replay(engine, manager, csv_path: str, interval: float, user_id: str) -> TripAggregate:
    samples = load_samples(csv_path)
    logger.info(f"Loaded {len(samples)} samples from {csv_path}")

    handle = await engine.start_trip(user_id, nav_provider="replay")
    try:
        for count, sample in enumerate(samples, start=1):
            if not RUNNING:
                logger.info(f"Replay stopped after {count - 1} samples")
                break

            try:
                result = await engine.ingest_sample(handle.trip_id, sample)
            except TelemetryError as e:
                # A bad row only affects itself
                logger.warning(f"Replay sample {count} rejected: {e.kind}")
                continue

            if manager is not None:
                await manager.broadcast_update(result)

            if count % 10 == 0:
                logger.debug(f"Replayed {count}/{len(samples)} samples for trip {handle.trip_id}")

            if interval > 0:
                await asyncio.sleep(interval)
    finally:
        aggregate = await engine.end_trip(handle.trip_id)

    logger.info(f"Replay of trip {handle.trip_id} complete")
    return aggregate
