"""
Body Composition Recommendations

Turns the P-ratio factor breakdown into prioritized, categorized suggestions.
Reads only the factors (to decide what to recommend) and the inputs (to quote
the user's current numbers back to them).
"""

import logging
from typing import List, Optional

from shared_models import (
    OPTIMAL_FACTORS,
    ImprovementPotential,
    PartitionRatioFactors,
    PartitionRatioInputs,
    Recommendation,
    RecommendationCategory,
    RecommendationPriority,
    TrainingAge,
)

logger = logging.getLogger(__name__)

TARGET_PROTEIN_PER_KG = 2.0


def _protein_recommendation(
    factors: PartitionRatioFactors, inputs: PartitionRatioInputs
) -> Recommendation:
    current_g = int(round(inputs.avg_daily_protein_grams))
    current_per_kg = inputs.avg_daily_protein_per_kg

    # Bodyweight estimated back from lean mass and body fat
    estimated_bodyweight = inputs.current_lean_mass_kg / (
        1 - inputs.current_body_fat_percent / 100
    )
    target_g = int(round(estimated_bodyweight * TARGET_PROTEIN_PER_KG))

    if factors.protein_factor < 0.92:
        description = (
            f"You're averaging {current_per_kg:.1f}g/kg. Research shows 1.8-2.2g/kg "
            f"significantly improves muscle retention during a cut. This is your "
            f"most impactful lever."
        )
    else:
        description = (
            f"You're at {current_per_kg:.1f}g/kg. Bumping to 2.0g/kg may provide "
            f"additional muscle preservation."
        )

    return Recommendation(
        category=RecommendationCategory.PROTEIN,
        priority=(
            RecommendationPriority.HIGH
            if factors.protein_factor < 0.95
            else RecommendationPriority.MEDIUM
        ),
        title="Increase Protein Intake",
        description=description,
        impact="Could shift 2-5% more weight loss toward fat",
        current_value=f"{current_g}g ({current_per_kg:.1f}g/kg)",
        target_value=f"{target_g}g ({TARGET_PROTEIN_PER_KG}g/kg)",
    )


def _training_recommendation(
    factors: PartitionRatioFactors, inputs: PartitionRatioInputs
) -> Recommendation:
    current_sets = inputs.avg_weekly_training_sets

    if factors.training_factor < 0.92:
        description = (
            f"You're averaging {current_sets:g} sets/week. Training provides the "
            f"signal to preserve muscle. Without it, your body is more likely to "
            f"break down muscle tissue."
        )
    else:
        description = (
            f"You're at {current_sets:g} sets/week. Maintaining or slightly "
            f"increasing volume while cutting helps preserve muscle mass."
        )

    return Recommendation(
        category=RecommendationCategory.TRAINING,
        priority=(
            RecommendationPriority.HIGH
            if factors.training_factor < 0.95
            else RecommendationPriority.MEDIUM
        ),
        title="Maintain Training Volume",
        description=description,
        impact="Could improve muscle retention by 5-10%",
        current_value=f"{current_sets:g} sets/week",
        target_value="15+ sets/muscle/week",
    )


def _deficit_recommendation(
    factors: PartitionRatioFactors, inputs: PartitionRatioInputs
) -> Recommendation:
    deficit_percent = inputs.deficit_percent

    if factors.deficit_factor < 0.88:
        description = (
            f"Your {deficit_percent:.0f}% deficit is quite aggressive. While faster "
            f"weight loss is tempting, larger deficits significantly increase muscle "
            f"loss risk. Consider a more moderate approach."
        )
    else:
        description = (
            f"Your {deficit_percent:.0f}% deficit is aggressive. A more moderate "
            f"deficit (15-20%) preserves more muscle even though weight loss is slower."
        )

    return Recommendation(
        category=RecommendationCategory.DEFICIT,
        priority=RecommendationPriority.MEDIUM,
        title="Consider Reducing Deficit",
        description=description,
        impact="Slower loss but better composition",
        current_value=f"{deficit_percent:.0f}% deficit",
        target_value="15-20% deficit",
    )


def _lean_body_fat_recommendation(inputs: PartitionRatioInputs) -> Recommendation:
    bf = inputs.current_body_fat_percent

    if bf < 10:
        description = (
            f"At {bf:.1f}% body fat, you're approaching competition-level leanness. "
            f"Your body will fight very hard to preserve remaining fat. Consider diet "
            f"breaks, refeeds, and accepting slower progress."
        )
    else:
        description = (
            f"At {bf:.1f}% body fat, your body is fighting harder to preserve fat. "
            f"This is normal. Consider smaller deficits, periodic diet breaks, or "
            f"strategic refeeds to help sustainability."
        )

    return Recommendation(
        category=RecommendationCategory.GENERAL,
        priority=(
            RecommendationPriority.HIGH if bf < 12 else RecommendationPriority.MEDIUM
        ),
        title="Expect Slower Progress",
        description=description,
        impact="Sustainability and muscle preservation",
    )


def generate_recommendations(
    factors: PartitionRatioFactors, inputs: PartitionRatioInputs
) -> List[Recommendation]:
    """
    Generate body composition improvement recommendations.

    Returns:
        Recommendations sorted high -> medium -> low priority, keeping the
        protein/training/deficit/general order within a priority
    """
    recommendations = []

    if factors.protein_factor < 1.0:
        recommendations.append(_protein_recommendation(factors, inputs))

    if factors.training_factor < 1.0:
        recommendations.append(_training_recommendation(factors, inputs))

    if factors.deficit_factor < 0.95:
        recommendations.append(_deficit_recommendation(factors, inputs))

    if factors.body_fat_factor < 0.9:
        recommendations.append(_lean_body_fat_recommendation(inputs))

    if (
        inputs.training_age == TrainingAge.BEGINNER
        and inputs.current_body_fat_percent > 18
    ):
        recommendations.append(
            Recommendation(
                category=RecommendationCategory.GENERAL,
                priority=RecommendationPriority.LOW,
                title="Leverage Beginner Advantage",
                description=(
                    "As a beginner with higher body fat, you have a unique "
                    "opportunity. You may be able to gain muscle while losing fat "
                    "(recomposition). Focus on progressive overload and adequate "
                    "protein."
                ),
                impact="Potential for simultaneous muscle gain and fat loss",
            )
        )

    if factors.final_p_ratio < 0.75:
        recommendations.append(
            Recommendation(
                category=RecommendationCategory.GENERAL,
                priority=RecommendationPriority.MEDIUM,
                title="Focus on Consistency",
                description=(
                    "Multiple factors are affecting your body composition. Rather "
                    "than trying to optimize everything at once, pick the "
                    "highest-impact change (usually protein) and nail it "
                    "consistently before adding more changes."
                ),
                impact="Sustainable improvement over time",
            )
        )

    logger.debug(f"Generated {len(recommendations)} recommendations")
    return sorted(recommendations, key=lambda r: r.priority.rank)


def get_top_recommendation(
    factors: PartitionRatioFactors, inputs: PartitionRatioInputs
) -> Optional[Recommendation]:
    recommendations = generate_recommendations(factors, inputs)
    return recommendations[0] if recommendations else None


def has_high_priority_recommendations(
    factors: PartitionRatioFactors, inputs: PartitionRatioInputs
) -> bool:
    return any(
        r.priority == RecommendationPriority.HIGH
        for r in generate_recommendations(factors, inputs)
    )


def generate_recommendation_summary(
    factors: PartitionRatioFactors, inputs: PartitionRatioInputs
) -> str:
    """One-line summary for a dashboard card"""
    recommendations = generate_recommendations(factors, inputs)

    if not recommendations:
        return "Your current approach is well-optimized for body composition."

    high = [r for r in recommendations if r.priority == RecommendationPriority.HIGH]
    medium = [
        r for r in recommendations if r.priority == RecommendationPriority.MEDIUM
    ]

    if high:
        titles = [r.title.lower() for r in high[:2]]
        return f"Focus on: {' and '.join(titles)}"

    if medium:
        return f"Consider: {medium[0].title.lower()}"

    return "Minor optimizations available"


def estimate_improvement_potential(
    factors: PartitionRatioFactors,
) -> ImprovementPotential:
    """
    P-ratio reachable if protein, training and deficit were all optimal.

    Each suboptimal factor is swapped for its optimal value; the result is
    capped at 1.0.
    """
    current = factors.final_p_ratio
    potential = current

    for name, factor in (
        ("protein", factors.protein_factor),
        ("training", factors.training_factor),
        ("deficit", factors.deficit_factor),
    ):
        optimal = OPTIMAL_FACTORS[name]
        if factor < optimal:
            potential *= optimal / factor

    potential = min(1.0, potential)
    improvement_percent = int(round((potential - current) / current * 100))

    return ImprovementPotential(
        current_p_ratio=current,
        potential_p_ratio=potential,
        improvement_percent=improvement_percent,
    )
