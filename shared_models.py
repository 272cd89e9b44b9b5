"""
Shared Data Models for the P-Ratio Engine

This module contains all shared dataclasses and enums used throughout the
partition-ratio engine: the factor model, the composition predictor, the
DEXA calibration routine and the recommendation layer.

Unified data models provide:
- Type safety and validation
- Consistent data structures across modules
- Explicit ordering for confidence ladders
- Single source of truth for model constants
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

# ============================================================================
# ENUMS
# ============================================================================


class _OrderedEnum(Enum):
    """Enum whose members compare by declaration order"""

    @property
    def rank(self) -> int:
        return list(type(self)).index(self)

    def __lt__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.rank >= other.rank


class BiologicalSex(Enum):
    """Selects the sex-specific body fat thresholds"""

    MALE = "male"
    FEMALE = "female"


class TrainingAge(Enum):
    """Training experience levels affecting partitioning"""

    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class TimeOfDay(Enum):
    MORNING_FASTED = "morning_fasted"
    MORNING_FED = "morning_fed"
    AFTERNOON = "afternoon"
    EVENING = "evening"


class HydrationStatus(Enum):
    NORMAL = "normal"
    DEHYDRATED = "dehydrated"
    OVERHYDRATED = "overhydrated"
    UNKNOWN = "unknown"


class ScanConfidence(Enum):
    """Reliability of a single scan, derived from its conditions"""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class CalibrationConfidence(_OrderedEnum):
    """Confidence in a learned P-ratio: none < low < medium < high"""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PredictionConfidence(_OrderedEnum):
    """
    Confidence in a body composition prediction: low < moderate < reasonable.

    There is no HIGH member; a prediction never claims high confidence.
    """

    LOW = "low"
    MODERATE = "moderate"
    REASONABLE = "reasonable"


class PRatioQuality(Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class RecommendationCategory(Enum):
    PROTEIN = "protein"
    TRAINING = "training"
    DEFICIT = "deficit"
    GENERAL = "general"


class RecommendationPriority(Enum):
    """
    Urgency of a recommendation. Members do not support < or >; use
    ``rank`` to sort for display, high first.
    """

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_DISPLAY_RANK[self]


_PRIORITY_DISPLAY_RANK = {
    RecommendationPriority.HIGH: 0,
    RecommendationPriority.MEDIUM: 1,
    RecommendationPriority.LOW: 2,
}


# ============================================================================
# CONSTANTS AND CONFIGURATIONS
# ============================================================================

# Research baseline: ~80% of weight lost is fat for a trained lifter in a
# moderate deficit with adequate protein
BASE_P_RATIO = 0.80

# Base +/- uncertainty on a model-calculated P-ratio
BASE_UNCERTAINTY = 0.12

# Bounds for a model-calculated ratio
MODEL_RATIO_BOUNDS = (0.5, 1.0)

# Acceptance window for a ratio observed between two scans. Recomposition
# (fat loss with lean gain) can push an observed ratio above 1.0.
EMPIRICAL_RATIO_BOUNDS = (0.3, 1.1)

# Energy content of 1 kg of body mass change
KCAL_PER_KG = 7700

# Scan pair validation thresholds
MIN_WEIGHT_CHANGE_KG = 1.0
MIN_SCAN_INTERVAL_DAYS = 14

# Calibration confidence gates: (minimum valid pairs, maximum std dev)
CALIBRATION_CONFIDENCE_GATES = {
    CalibrationConfidence.HIGH: (4, 0.08),
    CalibrationConfidence.MEDIUM: (2, 0.12),
}

# Factor values a well-run cut can reach for the behavioural levers
OPTIMAL_FACTORS = {
    "protein": 1.08,
    "training": 1.06,
    "deficit": 1.04,
}


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================


@dataclass(frozen=True)
class ScanConditions:
    """Scan conditions that affect measurement reliability"""

    time_of_day: TimeOfDay = TimeOfDay.MORNING_FASTED
    hydration_status: HydrationStatus = HydrationStatus.UNKNOWN
    recent_workout: bool = False  # Worked out within 24h
    same_provider_as_previous: bool = False

    @property
    def confidence(self) -> ScanConfidence:
        return calculate_scan_confidence(self)


@dataclass(frozen=True)
class ScanRecord:
    """
    Immutable DEXA scan snapshot. All masses are in kilograms.

    Records arrive already validated for internal consistency by the intake
    flow; only physically impossible values are rejected here.
    """

    scan_date: datetime
    total_mass_kg: float
    fat_mass_kg: float
    lean_mass_kg: float
    bone_mineral_kg: Optional[float] = None
    conditions: ScanConditions = field(default_factory=ScanConditions)
    provider: Optional[str] = None
    scan_id: Optional[str] = None
    notes: Optional[str] = None
    is_baseline: bool = False

    def __post_init__(self):
        if self.total_mass_kg <= 0:
            raise ValueError("total_mass_kg must be positive")
        if self.fat_mass_kg < 0 or self.lean_mass_kg < 0:
            raise ValueError("fat_mass_kg and lean_mass_kg must not be negative")
        if self.bone_mineral_kg is not None and self.bone_mineral_kg < 0:
            raise ValueError("bone_mineral_kg must not be negative")

    @property
    def body_fat_percent(self) -> float:
        return self.fat_mass_kg / self.total_mass_kg * 100

    @property
    def fat_free_mass_kg(self) -> float:
        return self.lean_mass_kg + (self.bone_mineral_kg or 0.0)

    @property
    def confidence(self) -> ScanConfidence:
        return self.conditions.confidence


@dataclass(frozen=True)
class PartitionRatioInputs:
    """
    Inputs for the P-ratio factor model.

    Behavioural values are averages over a recent window (usually 7-14 days)
    supplied by the nutrition and training subsystems.
    """

    avg_daily_protein_grams: float
    avg_daily_protein_per_kg: float
    avg_weekly_training_sets: float
    avg_daily_deficit_kcal: float
    deficit_percent: float  # Deficit as % of maintenance
    current_body_fat_percent: float
    current_lean_mass_kg: float
    biological_sex: BiologicalSex = BiologicalSex.MALE
    training_age: TrainingAge = TrainingAge.INTERMEDIATE
    is_enhanced: bool = False
    # Previously observed personal ratios, only narrows/widens uncertainty
    personal_p_ratio_history: Tuple[float, ...] = ()


@dataclass(frozen=True)
class PartitionRatioFactors:
    """Output of the factor model"""

    base_ratio: float
    protein_factor: float
    training_factor: float
    deficit_factor: float
    body_fat_factor: float
    age_factor: float
    enhanced_factor: float
    final_p_ratio: float
    confidence_range: Tuple[float, float]

    @property
    def spread(self) -> float:
        return self.confidence_range[1] - self.confidence_range[0]


@dataclass(frozen=True)
class ScenarioRange:
    optimistic: float
    expected: float
    pessimistic: float


@dataclass(frozen=True)
class PredictionAssumptions:
    avg_daily_deficit: float
    avg_daily_protein: float
    avg_weekly_volume: float
    p_ratio_used: float


@dataclass(frozen=True)
class Prediction:
    """Body composition prediction at a target weight with its uncertainty band"""

    target_weight_kg: float
    fat_mass_kg: ScenarioRange
    lean_mass_kg: ScenarioRange
    body_fat_percent: ScenarioRange
    confidence_level: PredictionConfidence
    confidence_factors: List[str]
    assumptions: PredictionAssumptions
    target_date: Optional[datetime] = None

    @property
    def predicted_fat_mass_kg(self) -> float:
        return self.fat_mass_kg.expected

    @property
    def predicted_lean_mass_kg(self) -> float:
        return self.lean_mass_kg.expected

    @property
    def predicted_body_fat_percent(self) -> float:
        return self.body_fat_percent.expected


@dataclass
class UserBodyCompProfile:
    """
    User's body composition tracking profile.

    Owned and persisted by the calling application. Engine functions never
    mutate a profile; they return an updated copy.
    """

    user_id: str
    scans: List[ScanRecord] = field(default_factory=list)
    learned_p_ratio: Optional[float] = None
    p_ratio_confidence: CalibrationConfidence = CalibrationConfidence.NONE
    p_ratio_data_points: int = 0

    # Reserved for personalisation, passed through unchanged
    protein_modifier: float = 1.0
    training_modifier: float = 1.0
    deficit_modifier: float = 1.0

    training_age: TrainingAge = TrainingAge.INTERMEDIATE
    is_enhanced: bool = False
    last_updated: Optional[datetime] = None


@dataclass(frozen=True)
class ScanPairAnalysis:
    """Analysis of one consecutive scan pair"""

    start_scan: ScanRecord
    end_scan: ScanRecord
    weight_change: float
    fat_change: float
    lean_change: float
    calculated_p_ratio: float
    duration_days: int
    is_valid: bool
    invalid_reason: Optional[str] = None


@dataclass(frozen=True)
class CalibrationResult:
    learned_p_ratio: float
    confidence: CalibrationConfidence
    data_points: int
    scan_pairs: List[ScanPairAnalysis]


@dataclass(frozen=True)
class BodyCompChangeSummary:
    start_date: datetime
    end_date: datetime
    weight_change: float
    fat_change: float
    lean_change: float
    body_fat_change: float
    calculated_p_ratio: float
    p_ratio_quality: PRatioQuality


@dataclass(frozen=True)
class PredictionAccuracyLog:
    """Comparison of a prediction against the scan that followed it"""

    user_id: Optional[str]
    prediction_date: Optional[datetime]
    actual_date: datetime

    predicted_body_fat: float
    predicted_lean_mass: float
    predicted_fat_mass: float

    actual_body_fat: float
    actual_lean_mass: float
    actual_fat_mass: float

    # Actual - predicted
    body_fat_error: float
    lean_mass_error: float
    fat_mass_error: float

    within_range: bool

    predicted_p_ratio: float
    actual_p_ratio: float


@dataclass(frozen=True)
class TimeToTarget:
    weeks: int
    days: int

    @property
    def total_days(self) -> int:
        return self.weeks * 7 + self.days


@dataclass(frozen=True)
class MassChange:
    fat_loss: float
    lean_loss: float


@dataclass(frozen=True)
class WeightLossBreakdown:
    best_case: MassChange
    expected: MassChange
    worst_case: MassChange


@dataclass(frozen=True)
class WeightGainProjection:
    """Projection for a surplus phase; ratio is the lean share of the gain"""

    target_weight_kg: float
    lean_gain_ratio: float
    fat_mass_kg: ScenarioRange
    lean_mass_kg: ScenarioRange
    body_fat_percent: ScenarioRange
    confidence_level: PredictionConfidence
    confidence_factors: List[str]
    normalized_ffmi: Optional[ScenarioRange] = None


@dataclass(frozen=True)
class Recommendation:
    """Actionable recommendation derived from the factor breakdown"""

    category: RecommendationCategory
    priority: RecommendationPriority
    title: str
    description: str
    impact: str
    current_value: Optional[str] = None
    target_value: Optional[str] = None


@dataclass(frozen=True)
class ImprovementPotential:
    current_p_ratio: float
    potential_p_ratio: float
    improvement_percent: int


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================


def scan_sort_key(scan: ScanRecord) -> Tuple[datetime, float, float, float]:
    """Chronological order; same-day scans are tie-broken by their masses"""
    return (scan.scan_date, scan.total_mass_kg, scan.fat_mass_kg, scan.lean_mass_kg)


def calculate_scan_confidence(conditions: ScanConditions) -> ScanConfidence:
    """
    Score scan conditions to a confidence label.

    A fasted morning scan with normal hydration, no workout in the prior 24h
    and the same provider as the previous scan scores the maximum of 8.
    """
    score = 0

    if conditions.time_of_day == TimeOfDay.MORNING_FASTED:
        score += 3
    elif conditions.time_of_day == TimeOfDay.MORNING_FED:
        score += 2
    else:
        score += 1

    if conditions.hydration_status == HydrationStatus.NORMAL:
        score += 2
    elif conditions.hydration_status == HydrationStatus.UNKNOWN:
        score += 1

    # Fluid shifts after training
    if not conditions.recent_workout:
        score += 1

    # Inter-machine variance
    if conditions.same_provider_as_previous:
        score += 2

    if score >= 7:
        return ScanConfidence.HIGH
    if score >= 4:
        return ScanConfidence.MEDIUM
    return ScanConfidence.LOW


def parse_scan_date(value) -> datetime:
    """
    Parse a scan date from config input.

    Accepts datetime objects, ISO 8601 strings (YYYY-MM-DD with optional time)
    and MM/DD/YYYY strings.
    """
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        pass
    try:
        return datetime.strptime(value, "%m/%d/%Y")
    except ValueError:
        raise ValueError(
            f"Unrecognized scan date: {value}. Use YYYY-MM-DD or MM/DD/YYYY."
        )


def parse_biological_sex(sex_str: str) -> BiologicalSex:
    """Convert user-friendly sex string (m, f, male, female) to enum"""
    sex_lower = sex_str.lower()
    if sex_lower in ["m", "male"]:
        return BiologicalSex.MALE
    elif sex_lower in ["f", "female"]:
        return BiologicalSex.FEMALE
    else:
        raise ValueError(
            f"Unrecognized sex: {sex_str}. Use 'm', 'f', 'male', or 'female'."
        )


def convert_dict_to_scan_conditions(conditions: Optional[dict]) -> ScanConditions:
    if not conditions:
        return ScanConditions()
    return ScanConditions(
        time_of_day=TimeOfDay(conditions.get("time_of_day", "morning_fasted")),
        hydration_status=HydrationStatus(
            conditions.get("hydration_status", "unknown")
        ),
        recent_workout=conditions.get("recent_workout", False),
        same_provider_as_previous=conditions.get("same_provider_as_previous", False),
    )


def convert_dict_to_scan_record(scan: dict) -> ScanRecord:
    """
    Convert a scan dict to a ScanRecord.

    Either the masses or only the body fat percentage may be given. Missing
    masses are derived from total mass: fat = total * bf / 100 and
    lean = total - fat - bone.
    """
    total = scan["total_mass_kg"]
    bone = scan.get("bone_mineral_kg")

    fat = scan.get("fat_mass_kg")
    if fat is None:
        if "body_fat_percent" not in scan:
            raise ValueError("Scan needs fat_mass_kg or body_fat_percent")
        fat = total * (scan["body_fat_percent"] / 100)

    lean = scan.get("lean_mass_kg")
    if lean is None:
        lean = total - fat - (bone or 0.0)

    date_value = scan.get("date", scan.get("scan_date"))
    if date_value is None:
        raise ValueError("Scan needs a date")

    return ScanRecord(
        scan_date=parse_scan_date(date_value),
        total_mass_kg=total,
        fat_mass_kg=fat,
        lean_mass_kg=lean,
        bone_mineral_kg=bone,
        conditions=convert_dict_to_scan_conditions(scan.get("conditions")),
        provider=scan.get("provider"),
        scan_id=scan.get("id"),
        notes=scan.get("notes"),
        is_baseline=scan.get("is_baseline", False),
    )


def convert_dict_to_profile(
    user_info: dict, scan_history: List[dict]
) -> UserBodyCompProfile:
    """Convert config dicts to a UserBodyCompProfile with no calibration yet"""
    training_age = TrainingAge(user_info.get("training_age", "intermediate").lower())
    scans = sorted(
        (convert_dict_to_scan_record(scan) for scan in scan_history),
        key=scan_sort_key,
    )
    return UserBodyCompProfile(
        user_id=user_info.get("user_id", "local"),
        scans=scans,
        training_age=training_age,
        is_enhanced=user_info.get("is_enhanced", False),
    )


def convert_dict_to_inputs(
    behavior: dict,
    user_info: dict,
    latest_scan: ScanRecord,
    personal_history: Tuple[float, ...] = (),
) -> PartitionRatioInputs:
    """
    Build factor model inputs from behavioural averages and the latest scan.

    Protein per kg is derived from the scan's total mass when not given.
    """
    protein_grams = behavior.get("avg_daily_protein_grams", 0.0)
    protein_per_kg = behavior.get("avg_daily_protein_per_kg")
    if protein_per_kg is None:
        protein_per_kg = protein_grams / latest_scan.total_mass_kg

    return PartitionRatioInputs(
        avg_daily_protein_grams=protein_grams,
        avg_daily_protein_per_kg=protein_per_kg,
        avg_weekly_training_sets=behavior.get("avg_weekly_training_sets", 0.0),
        avg_daily_deficit_kcal=behavior.get("avg_daily_deficit_kcal", 0.0),
        deficit_percent=behavior.get("deficit_percent", 0.0),
        current_body_fat_percent=latest_scan.body_fat_percent,
        current_lean_mass_kg=latest_scan.lean_mass_kg,
        biological_sex=parse_biological_sex(user_info.get("biological_sex", "male")),
        training_age=TrainingAge(user_info.get("training_age", "intermediate").lower()),
        is_enhanced=user_info.get("is_enhanced", False),
        personal_p_ratio_history=tuple(personal_history),
    )
