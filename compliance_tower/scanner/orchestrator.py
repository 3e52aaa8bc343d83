"""
Scan orchestrator.

Sequences one scan run through its phases:

    Discovery -> Delta-Detection -> Fetch -> Parse -> Validate -> Persist
    -> Graph-Build -> Evidence-Check -> Notify

A run starts ``pending``, moves to ``in_progress`` and ends ``completed`` or
``failed``. Any exception inside a phase rolls back the open transaction,
marks the run failed and is re-raised to the caller.
"""

from __future__ import annotations

import asyncio
import inspect
import time
import traceback
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..db.audit_service import AuditService
from ..db.models import ScanRunModel
from ..db.services import FingerprintService, RepositoryService, ScanRunService
from ..errors import ScanStateError, ScanValidationError
from ..evidence.jws import JwsVerifier
from ..evidence.service import EvidenceService
from ..parsing.base import DocumentParser
from ..schemas.artifacts import ParsedArtifact
from ..schemas.enums import PHASE_PROGRESS, ArtifactKind, ScanPhase, ScanStatus
from ..schemas.primitives import utc_now
from ..schemas.scan import ScanRunStatus
from ..sources.base import SourceClient, SourceFile
from ..traceability.graph import TraceabilityGraphBuilder
from .delta import detect_changes
from .reconciler import ArtifactReconciler

logger = structlog.get_logger()

ProgressCallback = Callable[[int, ScanPhase], Any]


@dataclass
class _RunState:
    """Values accumulated while a run moves through its phases."""

    run_id: str
    repository_id: str
    clock: float
    phase: Optional[str] = None
    revision: Optional[str] = None
    commit_message: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)
    counters: Dict[str, int] = field(default_factory=dict)


def run_status(run: ScanRunModel) -> ScanRunStatus:
    return ScanRunStatus.model_validate(run.to_dict())


def _elapsed_ms(state: _RunState) -> int:
    return int((time.monotonic() - state.clock) * 1000)


class ScanOrchestrator:
    """Runs scans of registered repositories.

    Usage:
        orchestrator = ScanOrchestrator(db, source, parser, verifier)
        run_id = orchestrator.start_scan(repository_id)
        status = await orchestrator.execute_scan(run_id, "acme", "device-fw")
    """

    def __init__(
        self,
        db: Session,
        source: SourceClient,
        parser: DocumentParser,
        verifier: JwsVerifier,
        settings: Optional[Settings] = None,
        evidence_service: Optional[EvidenceService] = None,
    ):
        self.db = db
        self.source = source
        self.parser = parser
        self.settings = settings or get_settings()

        self.audit = AuditService(db)
        self.repositories = RepositoryService(db)
        self.scan_runs = ScanRunService(db, self.audit)
        self.fingerprints = FingerprintService(db)
        self.reconciler = ArtifactReconciler(db, self.audit)
        self.graph = TraceabilityGraphBuilder(db)
        self.evidence = evidence_service or EvidenceService(db, verifier, self.audit)

    def start_scan(self, repository_id: str) -> str:
        """Create a pending scan run for a repository.

        Raises:
            NotFoundError: If the repository is not registered
        """
        repo = self.repositories.require(repository_id)
        run = self.scan_runs.create(repo.id)
        self.repositories.update_last_scan(repo, run.id, ScanStatus.PENDING.value)
        self.db.commit()

        logger.info("scan_created", run_id=run.id, repository_id=repo.id)
        return run.id

    def get_run_status(self, run_id: str) -> ScanRunStatus:
        """Raises NotFoundError for unknown runs."""
        return run_status(self.scan_runs.require(run_id))

    def list_runs(self, repository_id: str, limit: int = 50) -> List[ScanRunStatus]:
        self.repositories.require(repository_id)
        return [
            run_status(run)
            for run in self.scan_runs.list_for_repository(repository_id, limit=limit)
        ]

    async def scan_repository(
        self, repository_id: str, on_progress: Optional[ProgressCallback] = None
    ) -> ScanRunStatus:
        """Start and execute a scan of a registered repository."""
        repo = self.repositories.require(repository_id)
        run_id = self.start_scan(repository_id)
        return await self.execute_scan(run_id, repo.owner, repo.name, on_progress)

    async def execute_scan(
        self,
        run_id: str,
        owner: str,
        repo_slug: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ScanRunStatus:
        """Execute a pending scan run through every phase.

        Args:
            run_id: Pending scan run created by ``start_scan``
            owner: Repository owner on the source host
            repo_slug: Repository name on the source host
            on_progress: Optional ``(percent, phase)`` callback, sync or async

        Returns:
            Final status of the completed run

        Raises:
            ScanStateError: If the run is not pending
            Exception: Whatever failed the run, after it was marked failed
        """
        run = self.scan_runs.require(run_id)
        if run.status != ScanStatus.PENDING.value:
            raise ScanStateError(run.id, run.status, ScanStatus.IN_PROGRESS.value)

        repo = self.repositories.require(run.repository_id)
        scan_logger = logger.bind(run_id=run.id, repository_id=repo.id)

        started_at = utc_now()
        state = _RunState(run_id=run.id, repository_id=repo.id, clock=time.monotonic())
        self.scan_runs.transition(run, ScanStatus.IN_PROGRESS, started_at=started_at)
        self.repositories.update_last_scan(
            repo, run.id, ScanStatus.IN_PROGRESS.value, started_at
        )
        self.db.commit()
        scan_logger.info("scan_started", source=f"{owner}/{repo_slug}")

        try:
            await self._run_phases(
                state, owner, repo_slug, repo.default_branch, on_progress, scan_logger
            )
        except Exception as exc:
            scan_logger.error("scan_failed", phase=state.phase, error=str(exc))
            self._record_failure(state, exc, scan_logger)
            raise

        run = self.scan_runs.require(run_id)
        return run_status(run)

    async def _run_phases(
        self,
        state: "_RunState",
        owner: str,
        repo_slug: str,
        branch: str,
        on_progress: Optional[ProgressCallback],
        scan_logger,
    ) -> None:
        root = self.settings.artifact_root.rstrip("/") + "/"

        # Discovery
        await self._enter(state, ScanPhase.DISCOVERY, on_progress, scan_logger)
        revision = await self.source.latest_revision(owner, repo_slug, branch)
        revision_meta = await self.source.revision_metadata(owner, repo_slug, revision)
        tree = await self.source.list_tree(
            owner, repo_slug, revision_meta.tree_id, recursive=True
        )
        qualifying: List[SourceFile] = [
            entry for entry in tree if entry.is_blob and entry.path.startswith(root)
        ]
        state.revision = revision
        state.commit_message = revision_meta.message
        self._check_viability(qualifying, f"{owner}/{repo_slug}")

        # Delta-Detection
        await self._enter(state, ScanPhase.DELTA_DETECTION, on_progress, scan_logger)
        changes = detect_changes(qualifying, self.fingerprints.prior_map(state.repository_id))
        state.meta["change_set"] = changes.summary()
        scan_logger.info("delta_detected", **changes.summary())

        # Fetch
        await self._enter(state, ScanPhase.FETCH, on_progress, scan_logger)
        fetched = await self.source.fetch_many(
            owner,
            repo_slug,
            changes.changed_paths,
            revision,
            batch_size=self.settings.fetch_batch_size,
        )
        missing = sorted(set(changes.changed_paths) - {f.path for f in fetched})
        if missing:
            state.meta["fetch_failures"] = missing

        # Parse
        await self._enter(state, ScanPhase.PARSE, on_progress, scan_logger)
        records: List[ParsedArtifact] = []
        skipped: List[str] = []
        for item in fetched:
            kind = self.parser.classify(item.path)
            if kind is None:
                skipped.append(item.path)
                continue
            records.append(self.parser.parse(kind, item.content, item.path))
        if skipped:
            state.meta["skipped_paths"] = skipped

        # Validate
        await self._enter(state, ScanPhase.VALIDATE, on_progress, scan_logger)
        accepted, rejections = self.reconciler.validate(records)
        state.meta["rejections"] = [r.model_dump(mode="json") for r in rejections]
        for rejection in rejections:
            scan_logger.warning(
                "artifact_rejected", file_path=rejection.file_path, reason=rejection.reason
            )

        # Persist
        await self._enter(state, ScanPhase.PERSIST, on_progress, scan_logger)
        result = self.reconciler.apply(state.repository_id, state.run_id, accepted)
        removed = self.reconciler.remove_superseded(
            state.repository_id,
            [item.path for item in fetched],
            result.written,
            trace_id=state.run_id,
        )
        removed += self.reconciler.remove_paths(
            state.repository_id, changes.deleted, trace_id=state.run_id
        )
        content_ids = {entry.path: entry.content_id for entry in changes.changed}
        self.fingerprints.upsert(
            state.repository_id,
            state.run_id,
            {item.path: content_ids.get(item.path, item.content_id) for item in fetched},
        )
        self.fingerprints.delete_paths(state.repository_id, changes.deleted)
        state.counters.update(
            artifacts_found=len(qualifying),
            artifacts_created=result.created,
            artifacts_updated=result.updated,
            artifacts_deleted=removed,
            artifacts_rejected=len(rejections),
        )
        self._checkpoint(state)

        # Graph-Build
        await self._enter(state, ScanPhase.GRAPH_BUILD, on_progress, scan_logger)
        graph = self.graph.build_graph(state.repository_id)
        state.meta["graph"] = graph.model_dump()
        state.meta["broken_links"] = graph.invalid
        self._checkpoint(state)

        # Evidence-Check
        await self._enter(state, ScanPhase.EVIDENCE_CHECK, on_progress, scan_logger)
        # Evidence left unverified by an earlier run that failed after Persist
        # is picked up here as well.
        evidence_ids = [
            written["natural_id"]
            for written in result.written
            if written["kind"] == ArtifactKind.EVIDENCE.value
        ]
        for natural_id in self.evidence.list_unverified(state.repository_id):
            if natural_id not in evidence_ids:
                evidence_ids.append(natural_id)
        if evidence_ids:
            batch = await self.evidence.verify_batch(
                state.repository_id, evidence_ids, trace_id=state.run_id
            )
            state.meta["evidence_check"] = {
                "total_processed": batch.total_processed,
                "success_count": batch.success_count,
                "failure_count": batch.failure_count,
            }

        # Notify
        await self._enter(state, ScanPhase.NOTIFY, on_progress, scan_logger)
        run = self.scan_runs.require(state.run_id)
        completed_at = utc_now()
        self.scan_runs.transition(
            run,
            ScanStatus.COMPLETED,
            phase=ScanPhase.NOTIFY.value,
            source_revision=state.revision,
            commit_message=state.commit_message,
            completed_at=completed_at,
            duration_ms=_elapsed_ms(state),
            meta=dict(state.meta),
            **state.counters,
        )
        repo = self.repositories.require(state.repository_id)
        self.repositories.update_last_scan(
            repo, run.id, ScanStatus.COMPLETED.value, completed_at
        )
        self.db.commit()
        scan_logger.info("scan_completed", duration_ms=run.duration_ms, **state.counters)

    def _check_viability(self, qualifying: List[SourceFile], source: str) -> None:
        if not qualifying:
            raise ScanValidationError(
                "SCAN_NO_ARTIFACTS",
                f"No files found under {self.settings.artifact_root} in {source}",
            )
        context_path = self.settings.context_document_path
        if context_path not in {entry.path for entry in qualifying}:
            raise ScanValidationError(
                "SCAN_MISSING_CONTEXT", f"Missing {context_path} in {source}"
            )

    def _checkpoint(self, state: "_RunState") -> None:
        """Commit the phase's writes together with the run's progress."""
        run = self.scan_runs.require(state.run_id)
        run.phase = state.phase
        run.source_revision = state.revision
        run.commit_message = state.commit_message
        run.meta = dict(state.meta)
        for key, value in state.counters.items():
            setattr(run, key, value)
        self.db.commit()

    async def _enter(
        self,
        state: "_RunState",
        phase: ScanPhase,
        on_progress: Optional[ProgressCallback],
        scan_logger,
    ) -> None:
        state.phase = phase.value
        percent = PHASE_PROGRESS[phase]
        scan_logger.info("scan_phase", phase=phase.value, progress=percent)
        if on_progress is not None:
            await self._notify_progress(on_progress, percent, phase, scan_logger)

    async def _notify_progress(
        self,
        on_progress: ProgressCallback,
        percent: int,
        phase: ScanPhase,
        scan_logger,
    ) -> None:
        """Report progress; a failing or slow sink never affects the run."""
        try:
            outcome = on_progress(percent, phase)
            if inspect.isawaitable(outcome):
                await asyncio.wait_for(
                    outcome, timeout=self.settings.progress_timeout_seconds
                )
        except asyncio.TimeoutError:
            scan_logger.warning("progress_sink_timeout", phase=phase.value)
        except Exception as exc:
            scan_logger.warning("progress_sink_failed", phase=phase.value, error=str(exc))

    def _record_failure(
        self, state: "_RunState", exc: Exception, scan_logger
    ) -> None:
        self.db.rollback()
        try:
            run = self.scan_runs.require(state.run_id)
            completed_at = utc_now()
            self.scan_runs.transition(
                run,
                ScanStatus.FAILED,
                note=str(exc) or type(exc).__name__,
                phase=state.phase,
                completed_at=completed_at,
                duration_ms=_elapsed_ms(state),
                error_message=str(exc) or type(exc).__name__,
                error_detail="".join(
                    traceback.format_exception(type(exc), exc, exc.__traceback__)
                ),
                source_revision=state.revision,
                commit_message=state.commit_message,
                meta=dict(state.meta),
            )
            repo = self.repositories.require(state.repository_id)
            self.repositories.update_last_scan(
                repo, run.id, ScanStatus.FAILED.value, completed_at
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            scan_logger.exception("scan_failure_not_recorded")

