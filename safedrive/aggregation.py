import math
from typing import Iterable
from .config import Config, config as default_config
from .schemas import Sample, TripAggregate, Violation, ViolationKind


def blend_average(previous_average: float, speed: float) -> float:
    """Recency-weighted running average: round((prev + speed) / 2), halves rounded up.

    This is deliberately not an arithmetic mean; trip dashboards have always
    reported this blend and exported figures must stay comparable.
    """
    return float(math.floor((previous_average + speed) / 2 + 0.5))


class TripAggregator:
    """Incrementally folds accepted samples into a trip's running aggregate."""

    def __init__(self, cfg: Config = None):
        self.config = cfg or default_config

    def apply_sample(self, aggregate: TripAggregate, sample: Sample) -> TripAggregate:
        """Fold one sample (one sampling interval) into the aggregate."""
        speed = sample.speed
        return aggregate.model_copy(update={
            "duration": aggregate.duration + 1,
            "distance": aggregate.distance + speed / self.config.intervals_per_distance_unit,
            "max_speed": max(aggregate.max_speed, speed),
            "average_speed": blend_average(aggregate.average_speed, speed),
            "speed_violations": aggregate.speed_violations + (1 if speed > sample.speed_limit else 0),
        })

    def apply_violations(self, aggregate: TripAggregate, violations: Iterable[Violation]) -> TripAggregate:
        """Count braking and acceleration events.

        Speed violations are already tallied by apply_sample.
        """
        kinds = {v.kind for v in violations}
        return aggregate.model_copy(update={
            "hard_braking": aggregate.hard_braking + (1 if ViolationKind.HARD_BRAKING in kinds else 0),
            "rapid_acceleration": aggregate.rapid_acceleration + (
                1 if ViolationKind.RAPID_ACCELERATION in kinds else 0
            ),
        })
