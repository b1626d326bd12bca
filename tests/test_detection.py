import asyncio
import pytest
from datetime import datetime, timezone
from safedrive.aggregation import TripAggregator, blend_average
from safedrive.alerts import AlertEmitter, format_speed, speed_alert_message
from safedrive.detection import ViolationDetector, compute_speed_delta, is_alertable
from safedrive.errors import InvalidValue, OutOfOrder, ValidationError
from safedrive.schemas import Sample, TripAggregate, ViolationKind
from safedrive.scoring import SafetyScorer, calculate_safety_score
from safedrive.validation import SampleValidator

class TestSampleValidation:
    """Test sample validation rules."""

    def setup_method(self):
        self.validator = SampleValidator()

    def test_accepts_valid_sample(self, make_sample):
        """Test that a well-formed sample passes unchanged."""
        sample = make_sample(30.0)
        assert self.validator.validate("T1", sample, None) == sample

    def test_rejects_negative_speed(self, make_sample):
        """Test rejection of a negative speed."""
        with pytest.raises(InvalidValue) as exc:
            self.validator.validate("T1", make_sample(-1.0), None)
        assert exc.value.context["field"] == "speed"
        assert exc.value.context["trip_id"] == "T1"

    def test_rejects_negative_speed_limit(self, make_sample):
        """Test rejection of a negative speed limit."""
        with pytest.raises(InvalidValue):
            self.validator.validate("T1", make_sample(30.0, limit=-5.0), None)

    def test_rejects_out_of_range_coordinates(self, make_sample):
        """Test rejection of latitude and longitude outside their ranges."""
        with pytest.raises(InvalidValue):
            self.validator.validate("T1", make_sample(30.0, lat=90.5), None)
        with pytest.raises(InvalidValue):
            self.validator.validate("T1", make_sample(30.0, lon=-180.1), None)

    def test_rejects_non_finite_values(self, make_sample):
        """Test rejection of NaN readings."""
        with pytest.raises(InvalidValue):
            self.validator.validate("T1", make_sample(float("nan")), None)

    def test_invalid_value_is_a_validation_error(self, make_sample):
        """Test that InvalidValue is caught as a ValidationError."""
        with pytest.raises(ValidationError):
            self.validator.validate("T1", make_sample(-3.0), None)

    def test_rejects_older_timestamp(self, make_sample):
        """Test rejection of a sample older than the last accepted one."""
        last = make_sample(30.0, offset=5).timestamp
        with pytest.raises(OutOfOrder) as exc:
            self.validator.validate("T1", make_sample(30.0, offset=4), last)
        assert exc.value.kind == "OutOfOrder"
        assert "last_accepted" in exc.value.context

    def test_accepts_equal_timestamp(self, make_sample):
        """Test that a repeated timestamp is accepted."""
        sample = make_sample(30.0, offset=5)
        assert self.validator.validate("T1", sample, sample.timestamp) == sample

    def test_naive_timestamp_is_treated_as_utc(self):
        """Test normalization of naive timestamps to UTC."""
        sample = Sample(latitude=0.0, longitude=0.0, speed=10.0, speed_limit=35.0,
                        timestamp=datetime(2025, 8, 1, 8, 0, 0))
        accepted = self.validator.validate("T1", sample, None)
        assert accepted.timestamp.tzinfo is not None
        assert accepted.timestamp == datetime(2025, 8, 1, 8, 0, 0, tzinfo=timezone.utc)

    def test_missing_timestamp_rejected(self):
        """Test rejection of a sample without a timestamp."""
        sample = Sample(latitude=0.0, longitude=0.0, speed=10.0, speed_limit=35.0)
        with pytest.raises(InvalidValue):
            self.validator.validate("T1", sample, None)

class TestTripAggregation:
    """Test running trip statistics."""

    def setup_method(self):
        self.aggregator = TripAggregator()

    def test_single_sample(self, make_sample):
        """Test aggregate after one sample."""
        aggregate = self.aggregator.apply_sample(TripAggregate(), make_sample(36.0))

        assert aggregate.duration == 1
        assert aggregate.distance == pytest.approx(36.0 / 3600)
        assert aggregate.max_speed == 36.0
        assert aggregate.average_speed == 18.0
        assert aggregate.speed_violations == 1

    def test_running_average_is_recency_weighted(self, make_sample):
        """Test the blended running average."""
        aggregate = TripAggregate()
        for speed in (40.0, 42.0, 10.0):
            aggregate = self.aggregator.apply_sample(aggregate, make_sample(speed))

        # (0+40)/2=20, (20+42)/2=31, (31+10)/2=20.5 -> 21
        assert aggregate.average_speed == 21.0

    def test_blend_rounds_halves_up(self):
        """Test half-up rounding of the blended average."""
        assert blend_average(0.0, 41.0) == 21.0
        assert blend_average(0.0, 43.0) == 22.0
        assert blend_average(10.0, 10.0) == 10.0

    def test_max_speed_tracks_true_maximum(self, make_sample):
        """Test max speed, distance and duration over a sequence."""
        speeds = [12.0, 55.5, 31.0, 55.4, 0.0, 18.0]
        aggregate = TripAggregate()
        for speed in speeds:
            aggregate = self.aggregator.apply_sample(aggregate, make_sample(speed))

        assert aggregate.max_speed == max(speeds)
        assert aggregate.distance == pytest.approx(sum(speeds) / 3600)
        assert aggregate.duration == len(speeds)

    def test_at_limit_is_not_a_violation(self, make_sample):
        """Test that driving exactly at the limit is not counted."""
        aggregate = self.aggregator.apply_sample(TripAggregate(), make_sample(35.0, limit=35.0))
        assert aggregate.speed_violations == 0

    def test_apply_violations_counts_braking_and_acceleration(self, make_sample):
        """Test that only braking and acceleration counters change."""
        detector = ViolationDetector()
        violations = detector.detect("T1", make_sample(20.0), 50.0)
        aggregate = self.aggregator.apply_violations(TripAggregate(), violations)

        assert aggregate.hard_braking == 1
        assert aggregate.rapid_acceleration == 0
        assert aggregate.speed_violations == 0

    def test_aggregate_is_not_mutated(self, make_sample):
        """Test that aggregation returns a new aggregate."""
        original = TripAggregate()
        self.aggregator.apply_sample(original, make_sample(50.0))
        assert original.duration == 0

class TestViolationDetection:
    """Test violation classification."""

    def setup_method(self):
        self.detector = ViolationDetector()

    def test_speed_delta(self):
        """Test per-interval speed delta."""
        assert compute_speed_delta(None, 50.0) == 0.0
        assert compute_speed_delta(50.0, 40.0) == -10.0

    def test_counted_but_not_alertable_overspeed(self, make_sample):
        """Test overspeed within the alert margin."""
        violations = self.detector.detect("T1", make_sample(40.0, limit=35.0), None)

        assert len(violations) == 1
        assert violations[0].kind == ViolationKind.SPEED_VIOLATION
        assert not violations[0].alertable

    def test_alertable_overspeed(self, make_sample):
        """Test overspeed beyond the alert margin."""
        violations = self.detector.detect("T1", make_sample(42.0, limit=35.0), 40.0)

        assert len(violations) == 1
        assert violations[0].alertable
        assert violations[0].trip_id == "T1"

    def test_alert_margin_is_strict(self):
        """Test the alert margin boundary."""
        assert not is_alertable(40.0, 35.0, 5.0)
        assert is_alertable(40.1, 35.0, 5.0)

    def test_hard_braking(self, make_sample):
        """Test hard braking detection."""
        violations = self.detector.detect("T1", make_sample(30.0), 45.0)

        assert [v.kind for v in violations] == [ViolationKind.HARD_BRAKING]
        assert violations[0].speed_delta == -15.0

    def test_rapid_acceleration(self, make_sample):
        """Test rapid acceleration detection."""
        violations = self.detector.detect("T1", make_sample(30.0), 15.0)
        assert [v.kind for v in violations] == [ViolationKind.RAPID_ACCELERATION]

    def test_delta_at_threshold_is_not_an_event(self, make_sample):
        """Test that a delta equal to the threshold is ignored."""
        assert self.detector.detect("T1", make_sample(30.0), 38.0) == []
        assert self.detector.detect("T1", make_sample(30.0), 22.0) == []

    def test_first_sample_cannot_brake(self, make_sample):
        """Test that the first sample has no braking event."""
        assert self.detector.detect("T1", make_sample(0.0), None) == []

    def test_speeding_and_acceleration_same_sample(self, make_sample):
        """Test multiple violations from one sample."""
        violations = self.detector.detect("T1", make_sample(60.0, limit=35.0), 30.0)

        kinds = [v.kind for v in violations]
        assert ViolationKind.SPEED_VIOLATION in kinds
        assert ViolationKind.RAPID_ACCELERATION in kinds
        assert ViolationKind.HARD_BRAKING not in kinds

    def test_thresholds_are_configurable(self, cfg, make_sample):
        """Test detection with overridden thresholds."""
        cfg.update_detection_thresholds(hard_braking_threshold=2.0, alert_speed_margin=0.0)
        detector = ViolationDetector(cfg)

        violations = detector.detect("T1", make_sample(36.0, limit=35.0), 39.0)

        kinds = [v.kind for v in violations]
        assert kinds == [ViolationKind.SPEED_VIOLATION, ViolationKind.HARD_BRAKING]
        assert violations[0].alertable

class TestSafetyScore:
    """Test safety score calculation."""

    def test_perfect_score(self):
        """Test score with no violations."""
        assert calculate_safety_score(0, 0) == 100

    def test_documented_example(self):
        """Test score for three speed violations and one hard brake."""
        assert calculate_safety_score(3, 1) == 91

    def test_floor(self):
        """Test the score floor."""
        assert calculate_safety_score(50, 0) == 60
        assert calculate_safety_score(0, 100) == 60

    def test_rapid_acceleration_does_not_penalize(self):
        """Test that rapid acceleration leaves the score alone."""
        scorer = SafetyScorer()
        aggregate = scorer.rescore(TripAggregate(rapid_acceleration=25))
        assert aggregate.safety_score == 100

    def test_score_is_pure_function_of_counters(self):
        """Test that rescoring is repeatable."""
        scorer = SafetyScorer()
        aggregate = TripAggregate(speed_violations=4, hard_braking=2, distance=3.0)
        first = scorer.rescore(aggregate)
        second = scorer.rescore(first)
        assert first.safety_score == second.safety_score == 86

    def test_score_always_in_bounds(self):
        """Test score bounds over a grid of counters."""
        for speed in range(0, 40, 3):
            for braking in range(0, 20, 2):
                assert 60 <= calculate_safety_score(speed, braking) <= 100

    def test_custom_weights(self, cfg):
        """Test score with overridden weights."""
        cfg.update_scoring_weights(speed_penalty=5, hard_braking_penalty=10, floor=0)
        assert calculate_safety_score(2, 1, cfg) == 80
        assert calculate_safety_score(30, 0, cfg) == 0

    def test_floor_above_ceiling_rejected(self, cfg):
        """Test rejection of a floor above the ceiling."""
        with pytest.raises(ValueError):
            cfg.update_scoring_weights(floor=120)

class TestAlertEmitter:
    """Test alert construction and delivery."""

    def setup_method(self):
        self.detector = ViolationDetector()
        self.created_at = datetime(2025, 8, 1, 8, 0, 0, tzinfo=timezone.utc)

    def test_message_embeds_speed_and_limit(self):
        """Test alert message formatting."""
        assert speed_alert_message(42.0, 35.0) == "Speed Alert: 42 mph in 35 mph zone"
        assert speed_alert_message(42.5, 35.0, "km/h") == "Speed Alert: 42.5 km/h in 35 km/h zone"
        assert format_speed(7.25) == "7.25"

    def test_alert_only_for_alertable_violation(self, make_sample):
        """Test that only alertable violations raise an alert."""
        emitter = AlertEmitter()
        counted = self.detector.detect("T1", make_sample(40.0), None)
        alertable = self.detector.detect("T1", make_sample(42.0), None)

        assert emitter.evaluate("T1", "U1", counted, self.created_at) is None
        alert = emitter.evaluate("T1", "U1", alertable, self.created_at)
        assert alert is not None
        assert alert.kind == "speed"
        assert alert.user_id == "U1"
        assert not alert.is_read

    def test_cooldown_suppresses_repeat_alerts(self, cfg, make_sample):
        """Test alert suppression inside the cooldown window."""
        cfg.update_detection_thresholds(alert_cooldown_samples=2)
        emitter = AlertEmitter(cfg)
        violations = self.detector.detect("T1", make_sample(50.0), None)

        assert emitter.evaluate("T1", "U1", violations, self.created_at, None) is not None
        assert emitter.evaluate("T1", "U1", violations, self.created_at, 1) is None
        assert emitter.evaluate("T1", "U1", violations, self.created_at, 2) is None
        assert emitter.evaluate("T1", "U1", violations, self.created_at, 3) is not None

    def test_failing_sink_is_swallowed(self, make_sample):
        """Test that one failing sink does not block the others."""
        delivered = []

        def broken(alert):
            raise RuntimeError("store down")

        async def collect(alert):
            delivered.append(alert)

        emitter = AlertEmitter(sinks=[broken, collect])
        alert = emitter.evaluate("T1", "U1", self.detector.detect("T1", make_sample(50.0), None), self.created_at)

        asyncio.run(emitter.publish(alert))

        assert delivered == [alert]
