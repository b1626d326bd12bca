from typing import List, Optional
from .config import Config, config as default_config
from .schemas import Sample, Violation, ViolationKind


def compute_speed_delta(prev_speed: Optional[float], speed: float) -> float:
    """Change in speed over one sampling interval."""
    if prev_speed is None:
        # First sample of a trip has nothing to compare against
        return 0.0
    return speed - prev_speed


def is_alertable(speed: float, speed_limit: float, margin: float) -> bool:
    return speed > speed_limit + margin


class ViolationDetector:
    """Classifies a sample against the previous one and the current limits."""

    def __init__(self, cfg: Config = None):
        self.config = cfg or default_config

    def detect(self, trip_id: str, sample: Sample, prev_speed: Optional[float]) -> List[Violation]:
        """Detect violations for a sample.

        A sample yields at most one of hard braking / rapid acceleration and,
        independently, at most one speed violation.
        """
        violations = []

        # Every over-limit sample counts; only a material overage is alertable
        if sample.speed > sample.speed_limit:
            violations.append(Violation(
                kind=ViolationKind.SPEED_VIOLATION,
                trip_id=trip_id,
                sample=sample,
                alertable=is_alertable(sample.speed, sample.speed_limit, self.config.alert_speed_margin)
            ))

        delta = compute_speed_delta(prev_speed, sample.speed)

        if -delta > self.config.hard_braking_threshold:
            violations.append(Violation(
                kind=ViolationKind.HARD_BRAKING,
                trip_id=trip_id,
                sample=sample,
                speed_delta=delta
            ))
        elif delta > self.config.rapid_acceleration_threshold:
            violations.append(Violation(
                kind=ViolationKind.RAPID_ACCELERATION,
                trip_id=trip_id,
                sample=sample,
                speed_delta=delta
            ))

        return violations
