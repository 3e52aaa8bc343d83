"""
Evidence verification service.

Verifies stored evidence artifacts and writes the outcome back onto the
artifact. Only this service writes the verification fields.
"""

import asyncio
import logging
from typing import List, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..db.audit_service import AuditService
from ..db.models import ArtifactModel
from ..errors import EvidenceContentError, NotFoundError
from ..schemas.enums import ArtifactKind, VerificationTier
from ..schemas.evidence import (
    BatchVerificationResult,
    TierVerificationStatus,
    VerificationOutcome,
    VerificationStatusSummary,
)
from ..schemas.primitives import utc_now
from .jws import JwsVerifier

logger = logging.getLogger(__name__)


class EvidenceService:
    """Service for verifying evidence signatures.

    Usage:
        service = EvidenceService(db_session, verifier)
        outcome = await service.verify_one(repository_id, "EV-SPEC-001-001.jws")
    """

    def __init__(
        self,
        db: Session,
        verifier: JwsVerifier,
        audit: Optional[AuditService] = None,
    ):
        self.db = db
        self.verifier = verifier
        self.audit = audit or AuditService(db)

    def list_evidence(self, repository_id: str) -> List[ArtifactModel]:
        return (
            self.db.query(ArtifactModel)
            .filter(
                ArtifactModel.repository_id == repository_id,
                ArtifactModel.kind == ArtifactKind.EVIDENCE.value,
            )
            .order_by(ArtifactModel.natural_id)
            .all()
        )

    def list_unverified(self, repository_id: str) -> List[str]:
        """Natural ids of evidence with content that has never been verified."""
        rows = (
            self.db.query(ArtifactModel.natural_id)
            .filter(
                ArtifactModel.repository_id == repository_id,
                ArtifactModel.kind == ArtifactKind.EVIDENCE.value,
                ArtifactModel.signature_verified_at.is_(None),
                ArtifactModel.raw_content.isnot(None),
                ArtifactModel.raw_content != "",
            )
            .order_by(ArtifactModel.natural_id)
            .all()
        )
        return [row.natural_id for row in rows]

    def get_evidence(self, repository_id: str, evidence_id: str) -> ArtifactModel:
        """Look up evidence by natural id (file name) or artifact id.

        Raises:
            NotFoundError: If no such evidence exists in the repository
        """
        evidence = (
            self.db.query(ArtifactModel)
            .filter(
                ArtifactModel.repository_id == repository_id,
                ArtifactModel.kind == ArtifactKind.EVIDENCE.value,
                or_(
                    ArtifactModel.natural_id == evidence_id,
                    ArtifactModel.id == evidence_id,
                ),
            )
            .first()
        )
        if evidence is None:
            raise NotFoundError("Evidence", evidence_id, scope=f"repository {repository_id}")
        return evidence

    async def verify_one(
        self,
        repository_id: str,
        evidence_id: str,
        trace_id: Optional[str] = None,
    ) -> VerificationOutcome:
        """Verify one evidence artifact and persist the outcome.

        Args:
            repository_id: Repository holding the evidence
            evidence_id: Evidence natural id (file name) or artifact id
            trace_id: Optional scan run id recorded on the audit entry

        Returns:
            VerificationOutcome for the evidence

        Raises:
            NotFoundError: If the evidence does not exist
            EvidenceContentError: If the evidence has no content to verify
        """
        evidence = self.get_evidence(repository_id, evidence_id)
        if not evidence.raw_content or not evidence.raw_content.strip():
            raise EvidenceContentError(evidence_id)

        result = self.verifier.verify(evidence.raw_content)
        verified_at = utc_now()
        before = {"is_signature_valid": evidence.is_signature_valid}

        try:
            evidence.is_signature_valid = result.is_valid
            evidence.signature_verified_at = verified_at
            if result.header is not None:
                evidence.jws_header = result.header
            if result.payload is not None:
                evidence.jws_payload = result.payload
            self.db.flush()
            self.audit.log_update(
                "Evidence",
                evidence.id,
                before=before,
                after={"is_signature_valid": result.is_valid},
                note=result.error or "Signature verified",
                trace_id=trace_id,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        return VerificationOutcome(
            evidence_id=evidence.natural_id,
            is_valid=result.is_valid,
            verified_at=verified_at,
            payload=result.payload,
            error=result.error,
        )

    async def verify_batch(
        self,
        repository_id: str,
        evidence_ids: Sequence[str],
        trace_id: Optional[str] = None,
    ) -> BatchVerificationResult:
        """Verify many evidence artifacts; a failing item never fails the batch.

        Results are returned in input order.
        """
        evidence_ids = list(evidence_ids)
        outcomes = await asyncio.gather(
            *(
                self.verify_one(repository_id, evidence_id, trace_id=trace_id)
                for evidence_id in evidence_ids
            ),
            return_exceptions=True,
        )

        results: List[VerificationOutcome] = []
        for evidence_id, outcome in zip(evidence_ids, outcomes):
            if isinstance(outcome, VerificationOutcome):
                results.append(outcome)
                continue
            if not isinstance(outcome, Exception):
                raise outcome
            logger.warning(f"Verification of evidence {evidence_id} failed: {outcome}")
            results.append(
                VerificationOutcome(
                    evidence_id=evidence_id, is_valid=False, error=str(outcome)
                )
            )

        success_count = sum(1 for r in results if r.is_valid)
        logger.info(
            f"Batch verification: {success_count}/{len(results)} valid signatures"
        )
        return BatchVerificationResult(
            total_processed=len(results),
            success_count=success_count,
            failure_count=len(results) - success_count,
            results=results,
        )

    def get_verification_status(self, repository_id: str) -> VerificationStatusSummary:
        """Summarize verification of all evidence in a repository, by tier."""
        evidence = self.list_evidence(repository_id)
        verified = sum(1 for e in evidence if e.is_signature_valid is True)

        by_tier = {tier.value: TierVerificationStatus() for tier in VerificationTier}
        for item in evidence:
            tier = by_tier.get(item.verification_tier or "")
            if tier is None:
                continue
            tier.total += 1
            if item.is_signature_valid is True:
                tier.verified += 1

        total = len(evidence)
        return VerificationStatusSummary(
            repository_id=repository_id,
            total=total,
            verified=verified,
            unverified=total - verified,
            verification_rate=int(verified * 100 / total) if total else 0,
            by_tier=by_tier,
        )
