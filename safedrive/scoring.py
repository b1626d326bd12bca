from .config import Config, config as default_config
from .schemas import TripAggregate


def calculate_safety_score(speed_violations: int, hard_braking: int, cfg: Config = None) -> int:
    """Safety score as a pure function of the cumulative counters.

    Formula: clamp(ceiling - speed_violations*2 - hard_braking*3, 60, 100) with
    default weights. Rapid acceleration is tracked but not penalized.
    """
    cfg = cfg or default_config
    penalty = (
        speed_violations * cfg.score_speed_penalty +
        hard_braking * cfg.score_hard_braking_penalty
    )
    return min(cfg.score_ceiling, max(cfg.score_floor, cfg.score_ceiling - penalty))


class SafetyScorer:

    def __init__(self, cfg: Config = None):
        self.config = cfg or default_config

    def initial_score(self) -> int:
        return self.config.score_ceiling

    def rescore(self, aggregate: TripAggregate) -> TripAggregate:
        score = calculate_safety_score(aggregate.speed_violations, aggregate.hard_braking, self.config)
        return aggregate.model_copy(update={"safety_score": score})
