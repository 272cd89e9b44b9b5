"""
P-Ratio (Partition Ratio) Factor Model

P-ratio describes how the body partitions weight change between fat and lean
tissue:
- P-ratio of 0.80 = 80% of weight lost is fat, 20% is lean mass
- P-ratio of 0.95 = 95% fat loss, 5% lean loss (excellent)
- P-ratio of 0.60 = 60% fat loss, 40% lean loss (crash diet territory)

Research Foundation:
- Forbes (2000): body fat content governs the lean/fat partition of weight loss
- Helms et al. (2014): protein of 2.3-3.1 g/kg FFM preserves lean mass in a cut
- Garthe et al. (2011): slower weekly loss rates preserve more lean mass
- Hall (2007): the leaner the starting point, the larger the lean share of loss

Trained individuals in a moderate deficit with adequate protein typically show
P-ratios of 0.75-0.85, which sets the 0.80 baseline.
"""

import logging
from typing import List, Sequence, Tuple

from shared_models import (
    BASE_P_RATIO,
    BASE_UNCERTAINTY,
    MODEL_RATIO_BOUNDS,
    BiologicalSex,
    PartitionRatioFactors,
    PartitionRatioInputs,
    PRatioQuality,
    TrainingAge,
)

logger = logging.getLogger(__name__)


# ============================================================================
# FACTOR TABLES
# ============================================================================
# Each table is evaluated top-down; the first matching row wins and the
# trailing default applies when no row matches.

# Protein (g/kg/day, matched with >=)
PROTEIN_TABLE: Tuple[Tuple[float, float], ...] = (
    (2.2, 1.08),  # Optimal
    (1.8, 1.04),  # Good
    (1.6, 1.00),  # Adequate
    (1.2, 0.95),  # Suboptimal
)
PROTEIN_DEFAULT = 0.88  # Significant muscle risk

# Weekly hard sets (matched with >=)
TRAINING_TABLE: Tuple[Tuple[float, float], ...] = (
    (15, 1.06),  # Strong stimulus
    (10, 1.02),  # Adequate
    (5, 0.96),  # Minimal
)
TRAINING_DEFAULT = 0.88  # Effectively untrained

# Deficit as % of maintenance (matched with <=)
DEFICIT_TABLE: Tuple[Tuple[float, float], ...] = (
    (15, 1.04),  # Conservative
    (20, 1.00),  # Moderate
    (25, 0.95),  # Aggressive
    (30, 0.88),  # Very aggressive
)
DEFICIT_DEFAULT = 0.80  # Crash diet territory

# Body fat % (matched with >=); leaner means the body fights harder
BODY_FAT_TABLES = {
    BiologicalSex.MALE: (
        (20, 1.08),  # Plenty of fat to lose
        (15, 1.02),
        (12, 0.95),  # Getting lean
        (10, 0.85),  # Very lean
    ),
    BiologicalSex.FEMALE: (
        (28, 1.08),
        (22, 1.02),
        (18, 0.95),
        (15, 0.85),
    ),
}
BODY_FAT_DEFAULT = 0.72  # Competition lean

# Beginners above this body fat can often recomp
NEWBIE_GAINS_BF_THRESHOLD = 18
TRAINING_AGE_FACTORS = {
    TrainingAge.BEGINNER: 1.05,
    TrainingAge.INTERMEDIATE: 1.00,
    TrainingAge.ADVANCED: 0.98,
}
NEWBIE_GAINS_FACTOR = 1.10

ENHANCED_FACTOR = 1.15

# Uncertainty multipliers, compounding
NO_HISTORY_UNCERTAINTY = 1.3
EXTREME_UNCERTAINTY = 1.2
BEGINNER_UNCERTAINTY = 1.15
EXTREME_BF_THRESHOLD = 12
EXTREME_DEFICIT_THRESHOLD = 25


def lookup_at_least(
    value: float, table: Sequence[Tuple[float, float]], default: float
) -> float:
    """Return the factor of the first row whose threshold value meets (>=)"""
    for threshold, factor in table:
        if value >= threshold:
            return factor
    return default


def lookup_at_most(
    value: float, table: Sequence[Tuple[float, float]], default: float
) -> float:
    """Return the factor of the first row whose threshold value stays under (<=)"""
    for threshold, factor in table:
        if value <= threshold:
            return factor
    return default


def clamp(value: float, bounds: Tuple[float, float] = MODEL_RATIO_BOUNDS) -> float:
    low, high = bounds
    return min(high, max(low, value))


# ============================================================================
# FACTOR MODEL
# ============================================================================


class PartitionRatioCalculator:
    """
    Multiplicative factor model for the partition ratio.

    Starts from BASE_P_RATIO and multiplies six independent step-function
    factors. Never raises for well-typed input: out-of-range values simply
    land in the first or last tier of each table.
    """

    def __init__(self, base_ratio: float = BASE_P_RATIO):
        self.base_ratio = base_ratio

    def protein_factor(self, protein_per_kg: float) -> float:
        return lookup_at_least(protein_per_kg, PROTEIN_TABLE, PROTEIN_DEFAULT)

    def training_factor(self, weekly_sets: float) -> float:
        return lookup_at_least(weekly_sets, TRAINING_TABLE, TRAINING_DEFAULT)

    def deficit_factor(self, deficit_percent: float) -> float:
        return lookup_at_most(deficit_percent, DEFICIT_TABLE, DEFICIT_DEFAULT)

    def body_fat_factor(self, body_fat_percent: float, sex: BiologicalSex) -> float:
        return lookup_at_least(
            body_fat_percent, BODY_FAT_TABLES[sex], BODY_FAT_DEFAULT
        )

    def age_factor(self, training_age: TrainingAge, body_fat_percent: float) -> float:
        if (
            training_age == TrainingAge.BEGINNER
            and body_fat_percent > NEWBIE_GAINS_BF_THRESHOLD
        ):
            return NEWBIE_GAINS_FACTOR
        return TRAINING_AGE_FACTORS[training_age]

    def enhanced_factor(self, is_enhanced: bool) -> float:
        return ENHANCED_FACTOR if is_enhanced else 1.0

    def uncertainty(self, inputs: PartitionRatioInputs) -> float:
        """
        Half-width of the confidence interval.

        Compounds penalties for missing personal history, extreme conditions
        (very lean or very aggressive deficit) and beginner status.
        """
        multiplier = 1.0

        if not inputs.personal_p_ratio_history:
            multiplier *= NO_HISTORY_UNCERTAINTY

        if (
            inputs.current_body_fat_percent < EXTREME_BF_THRESHOLD
            or inputs.deficit_percent > EXTREME_DEFICIT_THRESHOLD
        ):
            multiplier *= EXTREME_UNCERTAINTY

        if inputs.training_age == TrainingAge.BEGINNER:
            multiplier *= BEGINNER_UNCERTAINTY

        return BASE_UNCERTAINTY * multiplier

    def calculate(self, inputs: PartitionRatioInputs) -> PartitionRatioFactors:
        """
        Calculate the P-ratio and its confidence interval.

        Args:
            inputs: Recent protein, training and deficit averages plus current
                body composition and profile context

        Returns:
            PartitionRatioFactors with each factor, the clamped final ratio and
            the clamped confidence range
        """
        protein = self.protein_factor(inputs.avg_daily_protein_per_kg)
        training = self.training_factor(inputs.avg_weekly_training_sets)
        deficit = self.deficit_factor(inputs.deficit_percent)
        body_fat = self.body_fat_factor(
            inputs.current_body_fat_percent, inputs.biological_sex
        )
        age = self.age_factor(inputs.training_age, inputs.current_body_fat_percent)
        enhanced = self.enhanced_factor(inputs.is_enhanced)

        logger.debug(
            f"P-ratio factors: protein={protein}, training={training}, "
            f"deficit={deficit}, body_fat={body_fat}, age={age}, enhanced={enhanced}"
        )

        raw_ratio = (
            self.base_ratio * protein * training * deficit * body_fat * age * enhanced
        )
        final_ratio = clamp(raw_ratio)
        if final_ratio != raw_ratio:
            logger.debug(f"Raw P-ratio {raw_ratio:.3f} clamped to {final_ratio:.3f}")

        uncertainty = self.uncertainty(inputs)
        confidence_range = (
            clamp(final_ratio - uncertainty),
            clamp(final_ratio + uncertainty),
        )

        logger.info(
            f"Calculated P-ratio {final_ratio:.3f} "
            f"(range {confidence_range[0]:.3f}-{confidence_range[1]:.3f})"
        )

        return PartitionRatioFactors(
            base_ratio=self.base_ratio,
            protein_factor=protein,
            training_factor=training,
            deficit_factor=deficit,
            body_fat_factor=body_fat,
            age_factor=age,
            enhanced_factor=enhanced,
            final_p_ratio=final_ratio,
            confidence_range=confidence_range,
        )


def calculate_p_ratio(inputs: PartitionRatioInputs) -> PartitionRatioFactors:
    """Module-level shortcut for PartitionRatioCalculator().calculate"""
    return PartitionRatioCalculator().calculate(inputs)


# ============================================================================
# DISPLAY HELPERS
# ============================================================================


def get_p_ratio_description(p_ratio: float) -> str:
    """Get a text description of what the P-ratio means"""
    if p_ratio >= 0.9:
        return "Excellent - almost all weight loss is from fat"
    elif p_ratio >= 0.8:
        return "Good - mostly fat loss with minimal muscle loss"
    elif p_ratio >= 0.7:
        return "Fair - some muscle loss expected"
    elif p_ratio >= 0.6:
        return "Poor - significant muscle loss expected"
    else:
        return "Very poor - high risk of muscle loss"


def get_p_ratio_quality(p_ratio: float) -> PRatioQuality:
    if p_ratio >= 0.85:
        return PRatioQuality.EXCELLENT
    if p_ratio >= 0.75:
        return PRatioQuality.GOOD
    if p_ratio >= 0.65:
        return PRatioQuality.FAIR
    return PRatioQuality.POOR


def explain_p_ratio_factors(factors: PartitionRatioFactors) -> List[str]:
    """Explain which factors are helping or hurting this P-ratio"""
    explanations = []

    if factors.protein_factor >= 1.04:
        explanations.append("High protein intake is optimizing muscle retention")
    elif factors.protein_factor < 0.96:
        explanations.append("Protein intake could be improved for better results")

    if factors.training_factor >= 1.04:
        explanations.append(
            "Training volume is providing strong muscle preservation signal"
        )
    elif factors.training_factor < 0.96:
        explanations.append("More training volume would help preserve muscle")

    if factors.deficit_factor >= 1.02:
        explanations.append("Conservative deficit is favorable for body composition")
    elif factors.deficit_factor < 0.95:
        explanations.append("Aggressive deficit may increase muscle loss")

    if factors.body_fat_factor < 0.9:
        explanations.append(
            "Lower body fat makes muscle preservation more challenging"
        )

    if factors.enhanced_factor > 1.0:
        explanations.append("Enhanced status significantly improves partitioning")

    return explanations
