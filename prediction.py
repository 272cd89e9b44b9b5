"""
Body Composition Prediction Engine

Projects fat mass, lean mass and body fat percentage at a target weight from a
partition ratio. Every projected metric is reported as an
optimistic/expected/pessimistic triple, and the confidence label is capped at
"reasonable" because partitioning has high individual variance.

Energy model:
- 1 kg of body mass change ~ 7700 kcal (Wishnofsky, 1958; Hall, 2008)
"""

import logging
import math
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from shared_models import (
    KCAL_PER_KG,
    CalibrationConfidence,
    MassChange,
    PartitionRatioFactors,
    PartitionRatioInputs,
    Prediction,
    PredictionAssumptions,
    PredictionConfidence,
    ScanRecord,
    ScenarioRange,
    TimeToTarget,
    TrainingAge,
    UserBodyCompProfile,
    WeightGainProjection,
    WeightLossBreakdown,
)

logger = logging.getLogger(__name__)

DEFAULT_WEIGHT_DELTAS = (-2.5, -5.0, -7.5, -10.0)

# Confidence gates
SMALL_CHANGE_KG = 5
REASONABLE_MAX_SPREAD = 0.15
MODERATE_MAX_SPREAD = 0.2
CALIBRATED_MIN_DATA_POINTS = 2

# Smallest daily deficit used for time estimates
MIN_DAILY_DEFICIT_KCAL = 1.0

# Smallest target weight a projection divides by
MIN_TARGET_WEIGHT_KG = 1.0

UNCERTAINTY_DISCLAIMER = "Body composition predictions have inherent uncertainty"


def clamp_target_weight(target_weight: float) -> float:
    """Raise a non-positive or tiny target weight to MIN_TARGET_WEIGHT_KG"""
    if target_weight < MIN_TARGET_WEIGHT_KG:
        logger.warning(
            f"Target weight {target_weight} kg clamped to {MIN_TARGET_WEIGHT_KG}"
        )
        return MIN_TARGET_WEIGHT_KG
    return target_weight


class CompositionPredictor:
    """Applies a partition ratio to a starting scan"""

    def select_ratio(
        self, factors: PartitionRatioFactors, profile: UserBodyCompProfile
    ) -> float:
        """Personal ratio when calibrated, otherwise the factor model's"""
        if (
            profile.learned_p_ratio is not None
            and profile.p_ratio_confidence != CalibrationConfidence.NONE
        ):
            return profile.learned_p_ratio
        return factors.final_p_ratio

    def project(self, current_scan: ScanRecord, target_weight: float, ratio: float):
        """Return (fat_mass, lean_mass, body_fat_percent) for one ratio"""
        target_weight = clamp_target_weight(target_weight)
        weight_change = target_weight - current_scan.total_mass_kg
        fat_change = weight_change * ratio
        lean_change = weight_change - fat_change

        fat_mass = current_scan.fat_mass_kg + fat_change
        lean_mass = current_scan.lean_mass_kg + lean_change
        body_fat_percent = fat_mass / target_weight * 100
        return fat_mass, lean_mass, body_fat_percent

    def predict(
        self,
        current_scan: ScanRecord,
        target_weight: float,
        factors: PartitionRatioFactors,
        profile: UserBodyCompProfile,
        inputs: Optional[PartitionRatioInputs] = None,
        target_date: Optional[datetime] = None,
    ) -> Prediction:
        """
        Predict body composition at a target weight.

        Args:
            current_scan: Most recent scan
            target_weight: Target weight in kg
            factors: Factor model output, supplies the confidence range
            profile: User profile, supplies a learned ratio when calibrated
            inputs: Optional factor inputs, recorded as prediction assumptions
            target_date: Optional date the caller expects to reach the target

        Returns:
            Prediction with optimistic/expected/pessimistic ranges
        """
        target_weight = clamp_target_weight(target_weight)
        weight_change = target_weight - current_scan.total_mass_kg
        ratio = self.select_ratio(factors, profile)
        ratio_low, ratio_high = factors.confidence_range

        expected = self.project(current_scan, target_weight, ratio)
        optimistic = self.project(current_scan, target_weight, ratio_high)
        pessimistic = self.project(current_scan, target_weight, ratio_low)

        confidence_level = determine_confidence_level(
            profile, factors, abs(weight_change)
        )
        confidence_factors = build_confidence_factors(profile, factors)

        if inputs is not None:
            assumptions = PredictionAssumptions(
                avg_daily_deficit=inputs.avg_daily_deficit_kcal,
                avg_daily_protein=inputs.avg_daily_protein_grams,
                avg_weekly_volume=inputs.avg_weekly_training_sets,
                p_ratio_used=ratio,
            )
        else:
            assumptions = PredictionAssumptions(
                avg_daily_deficit=0.0,
                avg_daily_protein=0.0,
                avg_weekly_volume=0.0,
                p_ratio_used=ratio,
            )

        logger.info(
            f"Predicted {target_weight:.1f} kg: BF {expected[2]:.1f}% "
            f"({optimistic[2]:.1f}-{pessimistic[2]:.1f}%), "
            f"P-ratio {ratio:.2f}, confidence {confidence_level.value}"
        )

        return Prediction(
            target_weight_kg=target_weight,
            fat_mass_kg=ScenarioRange(optimistic[0], expected[0], pessimistic[0]),
            lean_mass_kg=ScenarioRange(optimistic[1], expected[1], pessimistic[1]),
            body_fat_percent=ScenarioRange(
                optimistic[2], expected[2], pessimistic[2]
            ),
            confidence_level=confidence_level,
            confidence_factors=confidence_factors,
            assumptions=assumptions,
            target_date=target_date,
        )


def determine_confidence_level(
    profile: UserBodyCompProfile,
    factors: PartitionRatioFactors,
    weight_change_kg: float,
) -> PredictionConfidence:
    """
    Decide the prediction confidence label.

    Never returns anything above REASONABLE.
    """
    has_personal_data = profile.p_ratio_data_points >= CALIBRATED_MIN_DATA_POINTS
    is_small_change = weight_change_kg < SMALL_CHANGE_KG
    spread = factors.spread

    if has_personal_data and is_small_change and spread < REASONABLE_MAX_SPREAD:
        return PredictionConfidence.REASONABLE

    if has_personal_data or (is_small_change and spread < MODERATE_MAX_SPREAD):
        return PredictionConfidence.MODERATE

    return PredictionConfidence.LOW


def build_confidence_factors(
    profile: UserBodyCompProfile, factors: PartitionRatioFactors
) -> List[str]:
    messages = [UNCERTAINTY_DISCLAIMER]

    if profile.p_ratio_data_points == 0:
        messages.append("No personal DEXA history yet - using research averages")
    elif profile.p_ratio_data_points == 1:
        messages.append(
            "Limited personal data (1 scan pair) - predictions will improve"
        )
    else:
        messages.append(
            f"Calibrated from {profile.p_ratio_data_points} scan comparisons"
        )

    if factors.body_fat_factor < 0.9:
        messages.append("Already lean - partitioning typically worsens")

    if factors.deficit_factor < 0.92:
        messages.append("Aggressive deficit may increase muscle loss")

    if factors.protein_factor < 0.96:
        messages.append("Higher protein intake may improve results")

    if factors.training_factor < 0.96:
        messages.append("More training volume may preserve more muscle")

    return messages


def predict_body_composition(
    current_scan: ScanRecord,
    target_weight: float,
    factors: PartitionRatioFactors,
    profile: UserBodyCompProfile,
    inputs: Optional[PartitionRatioInputs] = None,
    target_date: Optional[datetime] = None,
) -> Prediction:
    """Module-level shortcut for CompositionPredictor().predict"""
    return CompositionPredictor().predict(
        current_scan, target_weight, factors, profile, inputs, target_date
    )


# ============================================================================
# AUXILIARY OPERATIONS
# ============================================================================


def explain_weight_loss_breakdown(
    prediction: Prediction, current_scan: ScanRecord
) -> WeightLossBreakdown:
    """Fat and lean loss under each scenario relative to the starting scan"""

    def _loss(fat_mass: float, lean_mass: float) -> MassChange:
        return MassChange(
            fat_loss=current_scan.fat_mass_kg - fat_mass,
            lean_loss=current_scan.lean_mass_kg - lean_mass,
        )

    return WeightLossBreakdown(
        best_case=_loss(
            prediction.fat_mass_kg.optimistic, prediction.lean_mass_kg.optimistic
        ),
        expected=_loss(
            prediction.fat_mass_kg.expected, prediction.lean_mass_kg.expected
        ),
        worst_case=_loss(
            prediction.fat_mass_kg.pessimistic, prediction.lean_mass_kg.pessimistic
        ),
    )


def generate_weight_scenarios(
    current_scan: ScanRecord,
    factors: PartitionRatioFactors,
    profile: UserBodyCompProfile,
    weight_deltas: Optional[Sequence[float]] = None,
) -> List[Prediction]:
    """Predictions for a sweep of weight changes from the current scan"""
    if weight_deltas is None:
        weight_deltas = DEFAULT_WEIGHT_DELTAS

    predictor = CompositionPredictor()
    return [
        predictor.predict(
            current_scan, current_scan.total_mass_kg + delta, factors, profile
        )
        for delta in weight_deltas
    ]


def estimate_time_to_target(
    current_weight: float, target_weight: float, daily_deficit: float
) -> TimeToTarget:
    """
    Time to reach a target weight at a constant daily energy deficit.

    Returns whole weeks plus remaining days. A non-positive deficit is
    clamped to MIN_DAILY_DEFICIT_KCAL.
    """
    if daily_deficit < MIN_DAILY_DEFICIT_KCAL:
        logger.warning(
            f"Daily deficit {daily_deficit} kcal clamped to {MIN_DAILY_DEFICIT_KCAL}"
        )
        daily_deficit = MIN_DAILY_DEFICIT_KCAL

    weight_change_kg = abs(target_weight - current_weight)
    total_days = weight_change_kg * KCAL_PER_KG / daily_deficit

    return TimeToTarget(
        weeks=int(math.floor(total_days / 7)),
        days=int(round(total_days % 7)),
    )


def calculate_required_deficit(
    current_weight: float, target_weight: float, target_weeks: float
) -> int:
    """Daily deficit (kcal) needed to reach target weight within target_weeks"""
    if target_weeks < 1:
        logger.warning(f"Target of {target_weeks} weeks clamped to 1")
        target_weeks = 1

    weight_change_kg = abs(target_weight - current_weight)
    total_days = target_weeks * 7
    return int(round(weight_change_kg * KCAL_PER_KG / total_days))


def calculate_projection_date(
    current_weight: float,
    target_weight: float,
    daily_deficit: float,
    now: Optional[datetime] = None,
) -> datetime:
    """Calendar date the target weight is reached from now"""
    if now is None:
        now = datetime.now()
    time_to_target = estimate_time_to_target(
        current_weight, target_weight, daily_deficit
    )
    return now + timedelta(days=time_to_target.total_days)


# ============================================================================
# WEIGHT GAIN
# ============================================================================

# Share of a surplus-phase gain that is lean mass
GAIN_BASE_LEAN_RATIO = {
    TrainingAge.BEGINNER: 0.55,
    TrainingAge.INTERMEDIATE: 0.40,
    TrainingAge.ADVANCED: 0.30,
}
GAIN_ENHANCED_MULTIPLIER = 1.5
GAIN_ENHANCED_CAP = 0.75
GAIN_RATIO_BOUNDS = (0.2, 0.8)
GAIN_BAND_LOW = 0.7
GAIN_BAND_HIGH = 1.3
GAIN_BAND_CAP = 0.85


def calculate_normalized_ffmi(lean_mass_kg: float, height_cm: float) -> float:
    """FFMI normalized to 1.8 m: lean / h^2 + 6.1 * (1.8 - h)"""
    height_m = height_cm / 100
    ffmi = lean_mass_kg / (height_m * height_m)
    return ffmi + 6.1 * (1.8 - height_m)


def calculate_lean_gain_ratio(inputs: PartitionRatioInputs) -> float:
    ratio = GAIN_BASE_LEAN_RATIO[inputs.training_age]

    if inputs.is_enhanced:
        ratio = min(GAIN_ENHANCED_CAP, ratio * GAIN_ENHANCED_MULTIPLIER)

    if inputs.avg_daily_protein_per_kg >= 2.0:
        ratio *= 1.1
    elif inputs.avg_daily_protein_per_kg < 1.4:
        ratio *= 0.85

    if inputs.avg_weekly_training_sets < 5:
        # Barely training, most of the gain is fat
        ratio *= 0.5
    elif inputs.avg_weekly_training_sets >= 20:
        ratio *= 1.1

    # Larger surplus, more fat
    balance_magnitude = abs(inputs.deficit_percent)
    if balance_magnitude > 15:
        ratio *= 0.85
    elif balance_magnitude < 5:
        ratio *= 1.1

    low, high = GAIN_RATIO_BOUNDS
    return max(low, min(high, ratio))


def predict_weight_gain(
    current_scan: ScanRecord,
    target_weight: float,
    inputs: PartitionRatioInputs,
    height_cm: Optional[float] = None,
) -> WeightGainProjection:
    """
    Project body composition for a surplus phase.

    The ratio here is the lean share of the gain. Gain partitioning is much
    harder to predict than loss, so the confidence is always LOW.
    For the surplus, inputs.deficit_percent carries the surplus size.
    """
    target_weight = clamp_target_weight(target_weight)
    weight_gain = target_weight - current_scan.total_mass_kg
    lean_ratio = calculate_lean_gain_ratio(inputs)
    ratio_low = lean_ratio * GAIN_BAND_LOW
    ratio_high = min(GAIN_BAND_CAP, lean_ratio * GAIN_BAND_HIGH)

    def _project(ratio: float):
        lean_gain = weight_gain * ratio
        fat_gain = weight_gain - lean_gain
        lean_mass = current_scan.lean_mass_kg + lean_gain
        fat_mass = current_scan.fat_mass_kg + fat_gain
        return fat_mass, lean_mass, fat_mass / target_weight * 100

    # Optimistic means more of the gain is lean
    optimistic = _project(ratio_high)
    expected = _project(lean_ratio)
    pessimistic = _project(ratio_low)

    normalized_ffmi = None
    if height_cm is not None:
        normalized_ffmi = ScenarioRange(
            calculate_normalized_ffmi(optimistic[1], height_cm),
            calculate_normalized_ffmi(expected[1], height_cm),
            calculate_normalized_ffmi(pessimistic[1], height_cm),
        )

    logger.info(
        f"Weight gain projection to {target_weight:.1f} kg with lean ratio "
        f"{lean_ratio:.2f}"
    )

    return WeightGainProjection(
        target_weight_kg=target_weight,
        lean_gain_ratio=lean_ratio,
        fat_mass_kg=ScenarioRange(optimistic[0], expected[0], pessimistic[0]),
        lean_mass_kg=ScenarioRange(optimistic[1], expected[1], pessimistic[1]),
        body_fat_percent=ScenarioRange(optimistic[2], expected[2], pessimistic[2]),
        confidence_level=PredictionConfidence.LOW,
        confidence_factors=["Weight gain partitioning has high individual variance"],
        normalized_ffmi=normalized_ffmi,
    )


def create_empty_profile(
    user_id: str,
    training_age: TrainingAge = TrainingAge.INTERMEDIATE,
    is_enhanced: bool = False,
    now: Optional[datetime] = None,
) -> UserBodyCompProfile:
    """Default profile for a user with no scans"""
    return UserBodyCompProfile(
        user_id=user_id,
        scans=[],
        learned_p_ratio=None,
        p_ratio_confidence=CalibrationConfidence.NONE,
        p_ratio_data_points=0,
        training_age=training_age,
        is_enhanced=is_enhanced,
        last_updated=now if now is not None else datetime.now(),
    )
