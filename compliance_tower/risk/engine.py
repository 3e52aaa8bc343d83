"""
Risk scoring engine.

Computes four sub-scores from the current artifacts and traceability edges,
combines them into a weighted composite, and derives a band and
recommendations. Assessments are computed on demand and never stored.
"""

import logging
import math
from collections import defaultdict
from typing import Dict, List, Set

from sqlalchemy.orm import Session

from ..db.models import ArtifactModel, TraceabilityEdgeModel
from ..schemas.enums import ArtifactKind, RiskBand, RiskRating
from ..schemas.risk import RiskAssessment, RiskBreakdown, RiskFactor

logger = logging.getLogger(__name__)

WEIGHTS: Dict[str, float] = {
    "requirements_coverage": 0.30,
    "evidence_quality": 0.30,
    "verification_completeness": 0.25,
    "traceability_integrity": 0.15,
}

RECOMMENDATION_THRESHOLD = 60

NO_EVIDENCE_RECOMMENDATION = (
    "CRITICAL: No test evidence found. "
    "Implement automated testing with JWS evidence generation"
)
ALL_CLEAR_RECOMMENDATION = "System meets all compliance thresholds"


def _percent(part: int, whole: int) -> float:
    return part * 100 / whole


def truncate_score(value: float) -> int:
    """Drop the fractional part of a sub-score (66.67 -> 66)."""
    return max(0, min(100, math.floor(round(value, 9))))


def round_half_up(value: float) -> int:
    return math.floor(round(value, 9) + 0.5)


def band_for(score: int) -> RiskBand:
    if score >= 80:
        return RiskBand.LOW
    if score >= 60:
        return RiskBand.MEDIUM
    if score >= 40:
        return RiskBand.HIGH
    return RiskBand.CRITICAL


class RiskEngine:
    """Computes risk assessments for a repository."""

    def __init__(self, db: Session):
        self.db = db

    def compute_risk(self, repository_id: str) -> RiskAssessment:
        """Compute the risk assessment of one repository.

        Args:
            repository_id: Repository to assess

        Returns:
            RiskAssessment with integer composite in [0, 100]
        """
        artifacts = (
            self.db.query(ArtifactModel)
            .filter(ArtifactModel.repository_id == repository_id)
            .all()
        )
        edges = (
            self.db.query(TraceabilityEdgeModel)
            .filter(TraceabilityEdgeModel.repository_id == repository_id)
            .all()
        )

        by_kind: Dict[str, List[ArtifactModel]] = defaultdict(list)
        for artifact in artifacts:
            by_kind[artifact.kind].append(artifact)
        requirements = by_kind[ArtifactKind.REQUIREMENT.value]
        stories = by_kind[ArtifactKind.STORY.value]
        specs = by_kind[ArtifactKind.SPEC.value]
        evidence = by_kind[ArtifactKind.EVIDENCE.value]

        scores = {
            "requirements_coverage": self._coverage(requirements, stories, specs),
            "evidence_quality": self._evidence_quality(evidence),
            "verification_completeness": self._completeness(specs, evidence),
            "traceability_integrity": self._integrity(edges),
        }

        composite = sum(scores[name] * weight for name, weight in WEIGHTS.items())
        overall = max(0, min(100, round_half_up(composite)))
        band = band_for(overall)

        verified_specs = len(specs) - self._unverified_spec_count(specs, evidence)
        valid_signatures = sum(1 for e in evidence if e.is_signature_valid is True)
        valid_edges = sum(1 for edge in edges if edge.is_valid)
        descriptions = {
            "requirements_coverage": (
                f"{len(requirements)} requirements traced through "
                f"{len(stories)} user stories to {len(specs)} specifications"
            ),
            "evidence_quality": (
                f"{valid_signatures}/{len(evidence)} evidence artifacts with valid signatures"
            ),
            "verification_completeness": (
                f"{verified_specs}/{len(specs)} specifications with test evidence"
            ),
            "traceability_integrity": f"{valid_edges}/{len(edges)} traceability links resolved",
        }
        factors = [
            RiskFactor(
                category=name,
                score=truncate_score(scores[name]),
                weight=weight,
                description=descriptions[name],
            )
            for name, weight in WEIGHTS.items()
        ]

        assessment = RiskAssessment(
            repository_id=repository_id,
            overall_score=overall,
            band=band,
            risk_level=f"{band.value} (Score: {overall}/100)",
            breakdown=RiskBreakdown(
                **{name: truncate_score(value) for name, value in scores.items()}
            ),
            factors=factors,
            recommendations=self._recommendations(scores, requirements, specs, evidence),
        )
        logger.info(f"Risk assessment for {repository_id}: {assessment.risk_level}")
        return assessment

    def _coverage(
        self,
        requirements: List[ArtifactModel],
        stories: List[ArtifactModel],
        specs: List[ArtifactModel],
    ) -> float:
        """Requirements with a resolvable story that itself has a resolvable spec."""
        if not requirements:
            return 0.0

        story_ids = {story.natural_id for story in stories}
        stories_with_specs: Set[str] = {
            (spec.parent_ref or "").strip()
            for spec in specs
            if (spec.parent_ref or "").strip() in story_ids
        }
        covered_requirements: Set[str] = {
            (story.parent_ref or "").strip()
            for story in stories
            if story.natural_id in stories_with_specs
        }
        covered = sum(1 for r in requirements if r.natural_id in covered_requirements)
        return _percent(covered, len(requirements))

    def _evidence_quality(self, evidence: List[ArtifactModel]) -> float:
        if not evidence:
            return 0.0
        valid = sum(1 for e in evidence if e.is_signature_valid is True)
        return _percent(valid, len(evidence))

    def _unverified_spec_count(
        self, specs: List[ArtifactModel], evidence: List[ArtifactModel]
    ) -> int:
        # Evidence without a declared spec id verifies nothing
        evidenced = {(e.parent_ref or "").strip() for e in evidence} - {""}
        return sum(1 for spec in specs if spec.natural_id not in evidenced)

    def _completeness(
        self, specs: List[ArtifactModel], evidence: List[ArtifactModel]
    ) -> float:
        if not specs:
            return 100.0
        verified = len(specs) - self._unverified_spec_count(specs, evidence)
        return _percent(verified, len(specs))

    def _integrity(self, edges: List[TraceabilityEdgeModel]) -> float:
        if not edges:
            return 100.0
        return _percent(sum(1 for edge in edges if edge.is_valid), len(edges))

    def _recommendations(
        self,
        scores: Dict[str, float],
        requirements: List[ArtifactModel],
        specs: List[ArtifactModel],
        evidence: List[ArtifactModel],
    ) -> List[str]:
        recommendations: List[str] = []

        if scores["requirements_coverage"] < RECOMMENDATION_THRESHOLD:
            gap = round_half_up(100 - scores["requirements_coverage"])
            recommendations.append(
                f"Create user stories and specifications for uncovered requirements ({gap}% gap)"
            )
        if scores["evidence_quality"] < RECOMMENDATION_THRESHOLD:
            recommendations.append(
                "Improve test evidence quality by ensuring all JWS artifacts are properly signed"
            )
        if scores["verification_completeness"] < RECOMMENDATION_THRESHOLD:
            missing = self._unverified_spec_count(specs, evidence)
            recommendations.append(
                f"Generate test evidence for {missing} unverified specifications"
            )
        if scores["traceability_integrity"] < RECOMMENDATION_THRESHOLD:
            recommendations.append(
                "Fix broken traceability links between requirements, user stories, "
                "specifications and evidence"
            )

        high_risk = sum(1 for r in requirements if r.risk_rating == RiskRating.HIGH.value)
        if high_risk:
            recommendations.append(
                f"Prioritize verification for {high_risk} HIGH-risk requirements"
            )

        if not evidence:
            recommendations.append(NO_EVIDENCE_RECOMMENDATION)

        return recommendations or [ALL_CLEAR_RECOMMENDATION]
