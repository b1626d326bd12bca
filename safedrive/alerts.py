import inspect
import logging
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Union
from .config import Config, config as default_config
from .schemas import Alert, Violation, ViolationKind

logger = logging.getLogger(__name__)

AlertSink = Callable[[Alert], Union[None, Awaitable[Any]]]


def format_speed(value: float) -> str:
    """Render whole speeds without a trailing '.0'."""
    return f"{value:g}"


def speed_alert_message(speed: float, speed_limit: float, unit: str = "mph") -> str:
    return f"Speed Alert: {format_speed(speed)} {unit} in {format_speed(speed_limit)} {unit} zone"


class AlertEmitter:
    """Turns alertable speed violations into alerts and fans them out to sinks.

    Delivery is fire-and-forget: a failing sink is logged and skipped, it never
    propagates back into sample ingestion.
    """

    def __init__(self, cfg: Config = None, sinks: Optional[Iterable[AlertSink]] = None):
        self.config = cfg or default_config
        self.sinks: List[AlertSink] = list(sinks or [])

    def add_sink(self, sink: AlertSink):
        self.sinks.append(sink)

    def evaluate(
        self,
        trip_id: str,
        user_id: str,
        violations: Iterable[Violation],
        created_at: datetime,
        samples_since_alert: Optional[int] = None,
        sequence: Optional[int] = None
    ) -> Optional[Alert]:
        """Build an alert if the sample carries an alertable speed violation.

        ``samples_since_alert`` is the number of samples since the trip's last
        alert (None if it never alerted); alerts inside the configured cooldown
        window are suppressed.
        """
        for violation in violations:
            if violation.kind != ViolationKind.SPEED_VIOLATION or not violation.alertable:
                continue

            cooldown = self.config.alert_cooldown_samples
            if cooldown > 0 and samples_since_alert is not None and samples_since_alert <= cooldown:
                logger.debug(f"Alert for trip {trip_id} suppressed by cooldown ({samples_since_alert}/{cooldown})")
                return None

            sample = violation.sample
            return Alert(
                alert_id=uuid.uuid4().hex,
                kind="speed",
                message=speed_alert_message(sample.speed, sample.speed_limit, self.config.speed_unit),
                trip_id=trip_id,
                user_id=user_id,
                created_at=created_at,
                sequence=sequence
            )
        return None

    async def publish(self, alert: Alert):
        """Deliver an alert to every sink."""
        logger.info(f"Alert for trip {alert.trip_id}: {alert.message}")
        for sink in list(self.sinks):
            try:
                result = sink(alert)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Alert sink {sink!r} failed for alert {alert.alert_id}")
