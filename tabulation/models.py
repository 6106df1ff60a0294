"""Competition data model: segments, criteria, contestants, judges and ranking config."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

RANKING_METHODS = (
    "avg",
    "avg-rank",
    "rank-avg-rank",
    "weighted",
    "trimmed",
    "median",
    "borda",
    "custom",
)

# Methods whose final score is itself a rank: lower is better
RANK_ORIENTED_METHODS = ("avg-rank", "rank-avg-rank")

TIEBREAKERS = ("highest-score", "head-to-head", "specific-criteria", "none")

CALCULATION_METHODS = ("rawAverage", "percentage", "accumulatedPoints")

GENDERS = ("Male", "Female")


@dataclass
class Criterion:
    id: str
    name: str
    max_score: float
    description: str = ""
    is_prejudged: bool = False
    is_carry_forward: bool = False
    source_segments: List[str] = field(default_factory=list)
    scaling_factor: float = 1.0
    calculation_method: str = "rawAverage"
    max_raw_score: float = 100.0
    weight: Optional[float] = None

    @property
    def is_derived(self) -> bool:
        """Judges never score a derived criterion directly."""
        return self.is_prejudged or self.is_carry_forward

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Criterion":
        max_score = float(data.get("maxScore", 0))
        if max_score <= 0:
            raise ValueError(f"Criterion {data.get('id')!r} needs a positive maxScore")
        method = data.get("calculationMethod") or "rawAverage"
        if method not in CALCULATION_METHODS:
            raise ValueError(f"Unknown calculationMethod {method!r}")
        weight = data.get("weight")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            max_score=max_score,
            description=str(data.get("description", "")),
            is_prejudged=bool(data.get("isPrejudged", False)),
            is_carry_forward=bool(data.get("isCarryForward", False)),
            source_segments=[str(s) for s in data.get("sourceSegments") or []],
            scaling_factor=float(data.get("scalingFactor", 1.0)),
            calculation_method=method,
            max_raw_score=float(data.get("maxRawScore", 100.0)),
            weight=None if weight is None else float(weight),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "maxScore": self.max_score,
        }
        if self.is_prejudged:
            out["isPrejudged"] = True
            out["maxRawScore"] = self.max_raw_score
        if self.is_carry_forward:
            out["isCarryForward"] = True
            out["sourceSegments"] = list(self.source_segments)
            out["scalingFactor"] = self.scaling_factor
            out["calculationMethod"] = self.calculation_method
        if self.weight is not None:
            out["weight"] = self.weight
        return out


@dataclass
class Segment:
    id: str
    name: str
    advancing_candidates: int = 0
    criteria: List[Criterion] = field(default_factory=list)

    def criterion(self, criterion_id: str) -> Optional[Criterion]:
        for c in self.criteria:
            if c.id == criterion_id:
                return c
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Segment":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            advancing_candidates=int(data.get("advancingCandidates", 0)),
            criteria=[Criterion.from_dict(c) for c in data.get("criteria") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "advancingCandidates": self.advancing_candidates,
            "criteria": [c.to_dict() for c in self.criteria],
        }


@dataclass
class Contestant:
    id: str
    name: str
    current_segment_id: str
    gender: str = "Female"
    display_order: int = 0
    image_url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Contestant":
        gender = data.get("gender") or "Female"
        if gender not in GENDERS:
            raise ValueError(f"Unknown gender {gender!r}")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            current_segment_id=str(data.get("currentSegmentId", "")),
            gender=gender,
            display_order=int(data.get("displayOrder") or 0),
            image_url=data.get("imageUrl"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "gender": self.gender,
            "currentSegmentId": self.current_segment_id,
            "displayOrder": self.display_order,
            "imageUrl": self.image_url,
        }


@dataclass
class Judge:
    id: str
    name: str
    access_code: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Judge":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            access_code=str(data.get("accessCode", "")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "accessCode": self.access_code}


@dataclass
class RankingConfig:
    method: str = "avg"
    trim_percentage: float = 20.0
    use_segment_weights: bool = False
    segment_weights: Dict[str, float] = field(default_factory=dict)
    tiebreaker: str = "none"
    tiebreaker_criterion_id: Optional[str] = None
    custom_formula: str = ""

    def __post_init__(self):
        if self.method not in RANKING_METHODS:
            raise ValueError(f"Unknown ranking method {self.method!r}")
        if self.tiebreaker not in TIEBREAKERS:
            raise ValueError(f"Unknown tiebreaker {self.tiebreaker!r}")
        if not 0 <= self.trim_percentage <= 100:
            raise ValueError(f"trimPercentage must be within 0-100, got {self.trim_percentage}")

    @property
    def lower_is_better(self) -> bool:
        return self.method in RANK_ORIENTED_METHODS

    def segment_weight(self, segment_id: str) -> float:
        """Weight multiplier for a segment; 1 when unset or weighting is off."""
        if not self.use_segment_weights:
            return 1.0
        return float(self.segment_weights.get(segment_id, 1.0))

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RankingConfig":
        data = data or {}
        trim = data.get("trimPercentage")
        return cls(
            method=data.get("method") or "avg",
            trim_percentage=20.0 if trim is None else float(trim),
            use_segment_weights=bool(data.get("useSegmentWeights", False)),
            segment_weights={str(k): float(v) for k, v in (data.get("segmentWeights") or {}).items()},
            tiebreaker=data.get("tiebreaker") or "none",
            tiebreaker_criterion_id=data.get("tiebreakerCriterionId") or None,
            custom_formula=data.get("customFormula") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "trimPercentage": self.trim_percentage,
            "useSegmentWeights": self.use_segment_weights,
            "segmentWeights": dict(self.segment_weights),
            "tiebreaker": self.tiebreaker,
            "tiebreakerCriterionId": self.tiebreaker_criterion_id,
            "customFormula": self.custom_formula,
        }


@dataclass
class CompetitionSettings:
    name: str = ""
    separate_ranking_by_gender: bool = False
    segments: List[Segment] = field(default_factory=list)
    ranking: RankingConfig = field(default_factory=RankingConfig)

    def segment(self, segment_id: str) -> Optional[Segment]:
        for s in self.segments:
            if s.id == segment_id:
                return s
        return None

    def segment_index(self, segment_id: str) -> int:
        """Position in the competition order; -1 when the segment is unknown."""
        for idx, s in enumerate(self.segments):
            if s.id == segment_id:
                return idx
        return -1

    def criterion(self, segment_id: str, criterion_id: str) -> Optional[Criterion]:
        segment = self.segment(segment_id)
        return segment.criterion(criterion_id) if segment else None

    def derived_criteria(self, prejudged_only: bool = False) -> List[Tuple[str, str]]:
        """(segment, criterion) pairs that judges never score directly."""
        pairs = []
        for s in self.segments:
            for c in s.criteria:
                if c.is_prejudged or (c.is_carry_forward and not prejudged_only):
                    pairs.append((s.id, c.id))
        return pairs

    def remove_segment(self, segment_id: str) -> bool:
        before = len(self.segments)
        self.segments = [s for s in self.segments if s.id != segment_id]
        return len(self.segments) != before

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CompetitionSettings":
        data = data or {}
        return cls(
            name=str(data.get("name", "")),
            separate_ranking_by_gender=bool(data.get("separateRankingByGender", False)),
            segments=[Segment.from_dict(s) for s in data.get("segments") or []],
            ranking=RankingConfig.from_dict(data.get("ranking")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "separateRankingByGender": self.separate_ranking_by_gender,
            "segments": [s.to_dict() for s in self.segments],
            "ranking": self.ranking.to_dict(),
        }


@dataclass(frozen=True)
class ActiveCriterion:
    segment_id: str
    criterion_id: str

    def to_dict(self) -> Dict[str, str]:
        return {"segmentId": self.segment_id, "criterionId": self.criterion_id}


@dataclass
class CompetitionSnapshot:
    """Everything read wholesale when (re)loading a competition."""

    settings: CompetitionSettings
    contestants: List[Contestant] = field(default_factory=list)
    judges: List[Judge] = field(default_factory=list)
    active_criteria: List[ActiveCriterion] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CompetitionSnapshot":
        return cls(
            settings=CompetitionSettings.from_dict(data.get("competitionSettings")),
            contestants=[Contestant.from_dict(c) for c in data.get("contestants") or []],
            judges=[Judge.from_dict(j) for j in data.get("judges") or []],
            active_criteria=[
                ActiveCriterion(str(a["segmentId"]), str(a["criterionId"]))
                for a in data.get("activeCriteria") or []
            ],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "competitionSettings": self.settings.to_dict(),
            "contestants": [c.to_dict() for c in self.contestants],
            "judges": [j.to_dict() for j in self.judges],
            "activeCriteria": [a.to_dict() for a in self.active_criteria],
        }


@dataclass(frozen=True)
class ScoreRecord:
    segment_id: str
    contestant_id: str
    judge_id: str
    criterion_id: str
    value: float


@dataclass(frozen=True)
class ScoreEvent:
    """Change notification for one competition's scores."""

    competition_id: int
    segment_id: Optional[str] = None
    contestant_id: Optional[str] = None
    judge_id: Optional[str] = None
    criterion_id: Optional[str] = None
    deleted: bool = False
