"""
FastAPI application exposing scans, evidence verification, risk and
traceability queries.
"""

from __future__ import annotations

import importlib.metadata
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional

import structlog
from fastapi import BackgroundTasks, Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker

from .config import get_settings
from .db.audit_service import AuditService
from .db.base import get_db, get_session_local, init_database
from .db.services import RepositoryService
from .errors import (
    ComplianceError,
    ComplianceValidationError,
    ConfigurationError,
    NotFoundError,
    ScanStateError,
    SourceError,
)
from .evidence.jws import JwsVerifier
from .evidence.service import EvidenceService
from .logging_setup import configure_logging
from .parsing.frontmatter_parser import FrontmatterParser
from .risk.engine import RiskEngine
from .schemas.evidence import (
    BatchVerificationResult,
    BatchVerifyRequest,
    VerificationOutcome,
    VerificationStatusSummary,
)
from .schemas.risk import RiskAssessment
from .schemas.scan import RepositoryCreate, ScanRunStatus, ScanStarted
from .schemas.traceability import BrokenLink, GraphBuildSummary, TraceabilityChain
from .scanner.orchestrator import ScanOrchestrator
from .sources.base import SourceClient
from .sources.github import GitHubSourceClient
from .traceability.graph import TraceabilityGraphBuilder

logger = structlog.get_logger()

SourceFactory = Callable[[], SourceClient]

# Shared verifier; built once so that key configuration errors surface at start-up
_verifier: Optional[JwsVerifier] = None


def get_verifier() -> JwsVerifier:
    """Dependency returning the process-wide evidence verifier."""
    global _verifier
    if _verifier is None:
        _verifier = JwsVerifier()
    return _verifier


def get_session_factory() -> sessionmaker:
    """Dependency returning the session factory used by background scans."""
    return get_session_local()


def get_source_factory() -> SourceFactory:
    """Dependency returning a factory for source clients."""
    return GitHubSourceClient


async def get_orchestrator(
    db: Session = Depends(get_db),
    verifier: JwsVerifier = Depends(get_verifier),
    source_factory: SourceFactory = Depends(get_source_factory),
) -> AsyncGenerator[ScanOrchestrator, None]:
    source = source_factory()
    try:
        yield ScanOrchestrator(db, source, FrontmatterParser(), verifier)
    finally:
        await source.close()


async def run_scan_job(
    session_factory: sessionmaker,
    source_factory: SourceFactory,
    verifier: JwsVerifier,
    run_id: str,
    owner: str,
    name: str,
) -> None:
    """Execute a pending scan in its own session.

    The run records its own failure, so errors are logged and not re-raised.
    """
    job_logger = logger.bind(run_id=run_id)
    db = session_factory()
    try:
        async with source_factory() as source:
            orchestrator = ScanOrchestrator(db, source, FrontmatterParser(), verifier)
            await orchestrator.execute_scan(run_id, owner, name)
    except Exception as e:
        job_logger.error("background_scan_failed", error=str(e))
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    configure_logging()
    logger.info("Starting Compliance Tower")

    try:
        init_database()
        logger.info("Database initialized")

        verifier = get_verifier()
        logger.info(
            "Evidence verifier ready",
            keys=len(verifier.keystore),
            key_source=verifier.keystore.source,
        )
    except Exception as e:
        logger.error(f"Failed to start application: {e}")
        raise

    yield

    logger.info("Shutting down Compliance Tower")


app = FastAPI(
    title="Compliance Tower",
    description="Compliance artifact scanning, traceability and risk scoring",
    version=importlib.metadata.version("compliance-tower"),
    lifespan=lifespan,
)


def _error_response(status_code: int, exc: ComplianceError) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return _error_response(404, exc)


@app.exception_handler(ComplianceValidationError)
async def validation_handler(
    request: Request, exc: ComplianceValidationError
) -> JSONResponse:
    return _error_response(422, exc)


@app.exception_handler(ScanStateError)
async def state_handler(request: Request, exc: ScanStateError) -> JSONResponse:
    return _error_response(409, exc)


@app.exception_handler(SourceError)
async def source_handler(request: Request, exc: SourceError) -> JSONResponse:
    return _error_response(502, exc)


@app.exception_handler(ConfigurationError)
async def configuration_handler(
    request: Request, exc: ConfigurationError
) -> JSONResponse:
    logger.error("configuration_error", code=exc.code, message=exc.message)
    return _error_response(500, exc)


# Health and Info Endpoints
@app.get("/healthz")
def healthz() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/version")
def version() -> dict[str, str]:
    """Return the version of the application."""
    return {
        "version": importlib.metadata.version("compliance-tower"),
        "environment": get_settings().environment,
    }


# Repository Endpoints
@app.post("/repositories", status_code=201)
async def create_repository(
    payload: RepositoryCreate, db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Register a source repository for scanning."""
    repo = RepositoryService(db).create(
        payload.owner, payload.name, payload.default_branch
    )
    logger.info("repository_registered", repository_id=repo.id, slug=repo.slug)
    return repo.to_dict()


@app.get("/repositories")
async def list_repositories(
    limit: int = 100, offset: int = 0, db: Session = Depends(get_db)
) -> List[Dict[str, Any]]:
    """List registered repositories."""
    return [repo.to_dict() for repo in RepositoryService(db).list(limit, offset)]


@app.get("/repositories/{repository_id}")
async def get_repository(
    repository_id: str, db: Session = Depends(get_db)
) -> Dict[str, Any]:
    return RepositoryService(db).require(repository_id).to_dict()


# Scan Endpoints
@app.post("/repositories/{repository_id}/scans", status_code=202)
async def start_scan(
    repository_id: str,
    background_tasks: BackgroundTasks,
    orchestrator: ScanOrchestrator = Depends(get_orchestrator),
    session_factory: sessionmaker = Depends(get_session_factory),
    source_factory: SourceFactory = Depends(get_source_factory),
    verifier: JwsVerifier = Depends(get_verifier),
) -> ScanStarted:
    """
    Start a scan of a repository.

    The run is created ``pending`` and executed in the background; poll
    ``GET /scans/{run_id}`` for its progress.
    """
    repo = orchestrator.repositories.require(repository_id)
    owner, name = repo.owner, repo.name
    run_id = orchestrator.start_scan(repository_id)
    background_tasks.add_task(
        run_scan_job, session_factory, source_factory, verifier, run_id, owner, name
    )
    return ScanStarted(run_id=run_id, repository_id=repository_id)


@app.get("/repositories/{repository_id}/scans")
async def list_scans(
    repository_id: str,
    limit: int = 50,
    orchestrator: ScanOrchestrator = Depends(get_orchestrator),
) -> List[ScanRunStatus]:
    """List scan runs of a repository, newest first."""
    return orchestrator.list_runs(repository_id, limit=limit)


@app.get("/scans/{run_id}")
async def get_scan(
    run_id: str, orchestrator: ScanOrchestrator = Depends(get_orchestrator)
) -> ScanRunStatus:
    return orchestrator.get_run_status(run_id)


# Audit Endpoints
@app.get("/scans/{run_id}/audit")
async def get_scan_audit(
    run_id: str,
    limit: int = 500,
    orchestrator: ScanOrchestrator = Depends(get_orchestrator),
) -> List[Dict[str, Any]]:
    """Audit entries recorded during one scan run, oldest first."""
    orchestrator.get_run_status(run_id)
    return [e.to_dict() for e in orchestrator.audit.query_by_trace(run_id, limit=limit)]


@app.get("/audit/{entity_kind}/{entity_id}")
async def get_audit_trail(
    entity_kind: str,
    entity_id: str,
    limit: int = 50,
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    """Audit history of one entity (ScanRun, Evidence, Artifact), newest first."""
    entries = AuditService(db).query_by_entity(entity_kind, entity_id, limit=limit)
    return [e.to_dict() for e in entries]


# Evidence Endpoints
@app.post("/repositories/{repository_id}/evidence/verify-batch")
async def verify_evidence_batch(
    repository_id: str,
    request: BatchVerifyRequest,
    db: Session = Depends(get_db),
    verifier: JwsVerifier = Depends(get_verifier),
) -> BatchVerificationResult:
    """Verify many evidence artifacts; per-item failures do not abort the batch."""
    RepositoryService(db).require(repository_id)
    service = EvidenceService(db, verifier)
    return await service.verify_batch(repository_id, request.evidence_ids)


@app.post("/repositories/{repository_id}/evidence/{evidence_id}/verify")
async def verify_evidence(
    repository_id: str,
    evidence_id: str,
    db: Session = Depends(get_db),
    verifier: JwsVerifier = Depends(get_verifier),
) -> VerificationOutcome:
    """Verify one evidence artifact and store the outcome."""
    RepositoryService(db).require(repository_id)
    return await EvidenceService(db, verifier).verify_one(repository_id, evidence_id)


@app.get("/repositories/{repository_id}/evidence/status")
async def evidence_status(
    repository_id: str,
    db: Session = Depends(get_db),
    verifier: JwsVerifier = Depends(get_verifier),
) -> VerificationStatusSummary:
    RepositoryService(db).require(repository_id)
    return EvidenceService(db, verifier).get_verification_status(repository_id)


# Risk Endpoints
@app.get("/repositories/{repository_id}/risk")
async def get_risk(
    repository_id: str, db: Session = Depends(get_db)
) -> RiskAssessment:
    """Compute the current risk assessment of a repository."""
    RepositoryService(db).require(repository_id)
    return RiskEngine(db).compute_risk(repository_id)


# Traceability Endpoints
@app.post("/repositories/{repository_id}/traceability/build")
async def build_traceability(
    repository_id: str, db: Session = Depends(get_db)
) -> GraphBuildSummary:
    """Rebuild the traceability graph from the stored artifacts."""
    RepositoryService(db).require(repository_id)
    summary = TraceabilityGraphBuilder(db).build_graph(repository_id)
    db.commit()
    return summary


@app.get("/repositories/{repository_id}/traceability/broken-links")
async def broken_links(
    repository_id: str, db: Session = Depends(get_db)
) -> List[BrokenLink]:
    RepositoryService(db).require(repository_id)
    return TraceabilityGraphBuilder(db).list_broken_links(repository_id)


@app.get("/repositories/{repository_id}/traceability/chain/{natural_id}")
async def traceability_chain(
    repository_id: str, natural_id: str, db: Session = Depends(get_db)
) -> TraceabilityChain:
    """Upstream and downstream artifacts reachable from one artifact."""
    RepositoryService(db).require(repository_id)
    return TraceabilityGraphBuilder(db).get_chain(repository_id, natural_id)
