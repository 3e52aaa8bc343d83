"""
Tests for the scan orchestrator.

Verifies:
- a full scan persists artifacts, builds the graph and verifies evidence
- incremental scans fetch only changed files and remove deleted ones
- a file that no longer declares an artifact drops it from the store
- evidence left unverified by a failed run is verified by the next scan
- viability failures mark the run failed with the failing phase
- per-file fetch failures and rejected documents do not fail the run
- progress reporting never affects the run
"""

import pytest

from compliance_tower.db.audit_service import AuditService
from compliance_tower.db.models import ArtifactModel
from compliance_tower.errors import ScanStateError, ScanValidationError, SourceError
from compliance_tower.scanner.orchestrator import ScanOrchestrator
from compliance_tower.schemas.enums import ScanStatus
from compliance_tower.sources.inmemory import InMemorySourceClient
from compliance_tower.traceability.graph import TraceabilityGraphBuilder
from factories import requirement


@pytest.fixture
def source():
    return InMemorySourceClient()


@pytest.fixture
def orchestrator(db_session, source, parser, verifier, settings):
    return ScanOrchestrator(db_session, source, parser, verifier, settings=settings)


def _artifacts(db_session, repository_id):
    return {
        (a.kind, a.natural_id): a
        for a in db_session.query(ArtifactModel).filter_by(repository_id=repository_id)
    }


class TestFullScan:
    """First scan of a repository."""

    @pytest.mark.asyncio
    async def test_scan_persists_everything(
        self, db_session, orchestrator, source, repository, repo_files
    ):
        source.publish("acme", "device-fw", repo_files(), message="Initial import")

        result = await orchestrator.scan_repository(repository.id)

        assert result.status == ScanStatus.COMPLETED
        assert result.phase == "notify"
        assert result.commit_message == "Initial import"
        assert result.source_revision is not None
        assert result.artifacts_found == 6
        assert result.artifacts_created == 6
        assert result.artifacts_updated == 0
        assert result.artifacts_rejected == 0
        assert result.duration_ms >= 0
        assert result.meta["change_set"] == {"changed": 6, "unchanged": 0, "deleted": 0}
        assert result.meta["graph"]["total"] == 3
        assert result.meta["graph"]["invalid"] == 0
        assert result.meta["broken_links"] == 0
        assert result.meta["evidence_check"]["success_count"] == 1
        assert "README.md" not in source.fetch_calls

        artifacts = _artifacts(db_session, repository.id)
        assert ("context", "system_context") in artifacts
        evidence = artifacts[("evidence", "EV-SPEC-001-001.jws")]
        assert evidence.is_signature_valid is True

        db_session.refresh(repository)
        assert repository.last_scan_id == result.id
        assert repository.last_scan_status == "completed"

    @pytest.mark.asyncio
    async def test_run_history_is_audited(
        self, db_session, orchestrator, source, repository, repo_files
    ):
        source.publish("acme", "device-fw", repo_files())

        result = await orchestrator.scan_repository(repository.id)

        entries = AuditService(db_session).query_by_trace(result.id)
        transitions = [
            (e.before["status"], e.after["status"])
            for e in entries
            if e.action == "status_changed"
        ]
        assert transitions == [("pending", "in_progress"), ("in_progress", "completed")]
        assert any(e.entity_kind == "Evidence" for e in entries)

    @pytest.mark.asyncio
    async def test_run_listing(self, orchestrator, source, repository, repo_files):
        source.publish("acme", "device-fw", repo_files())
        result = await orchestrator.scan_repository(repository.id)

        assert orchestrator.get_run_status(result.id).status == ScanStatus.COMPLETED
        assert [r.id for r in orchestrator.list_runs(repository.id)] == [result.id]


class TestIncrementalScan:
    """Re-scans after the repository changed."""

    @pytest.mark.asyncio
    async def test_only_changed_files_are_processed(
        self, db_session, orchestrator, source, repository, repo_files
    ):
        files = repo_files()
        source.publish("acme", "device-fw", files)
        await orchestrator.scan_repository(repository.id)

        files[".gxp/requirements/REQ-002.md"] = requirement("REQ-002", "Alarm on air in line")
        del files[".gxp/specs/SPEC-001-001.md"]
        source.publish("acme", "device-fw", files)
        source.fetch_calls.clear()

        result = await orchestrator.scan_repository(repository.id)

        assert result.status == ScanStatus.COMPLETED
        assert result.meta["change_set"] == {"changed": 1, "unchanged": 4, "deleted": 1}
        assert source.fetch_calls == [".gxp/requirements/REQ-002.md"]
        assert result.artifacts_found == 5
        assert result.artifacts_created == 0
        assert result.artifacts_updated == 1
        assert result.artifacts_deleted == 1
        assert result.meta["broken_links"] == 1
        assert "evidence_check" not in result.meta

        artifacts = _artifacts(db_session, repository.id)
        assert ("spec", "SPEC-001-001") not in artifacts
        assert artifacts[("requirement", "REQ-002")].title == "Alarm on air in line"

        links = TraceabilityGraphBuilder(db_session).list_broken_links(repository.id)
        assert [(l.source_id, l.target_id) for l in links] == [
            ("SPEC-001-001", "EV-SPEC-001-001.jws")
        ]

    @pytest.mark.asyncio
    async def test_renamed_natural_id_replaces_old_artifact(
        self, db_session, orchestrator, source, repository, repo_files
    ):
        files = repo_files()
        source.publish("acme", "device-fw", files)
        await orchestrator.scan_repository(repository.id)
        old_id = _artifacts(db_session, repository.id)[("requirement", "REQ-001")].id

        files[".gxp/requirements/REQ-001.md"] = requirement("REQ-101", "Log every dose", "HIGH")
        source.publish("acme", "device-fw", files)

        result = await orchestrator.scan_repository(repository.id)

        assert result.artifacts_created == 1
        assert result.artifacts_deleted == 1
        assert result.meta["broken_links"] == 1

        requirements = sorted(
            natural_id for kind, natural_id in _artifacts(db_session, repository.id)
            if kind == "requirement"
        )
        assert requirements == ["REQ-002", "REQ-101"]

        links = TraceabilityGraphBuilder(db_session).list_broken_links(repository.id)
        assert [(l.source_id, l.target_id, l.link_type) for l in links] == [
            ("REQ-001", "US-001", "requirement_to_story")
        ]

        history = AuditService(db_session).query_by_entity("Artifact", old_id)
        assert [(e.action, e.trace_id) for e in history] == [("deleted", result.id)]
        assert history[0].before["natural_id"] == "REQ-001"

    @pytest.mark.asyncio
    async def test_file_losing_its_id_removes_old_artifact(
        self, db_session, orchestrator, source, repository, repo_files
    ):
        files = repo_files()
        source.publish("acme", "device-fw", files)
        await orchestrator.scan_repository(repository.id)

        files[".gxp/requirements/REQ-002.md"] = "---\ntitle: Alarm on occlusion\n---\nDraft.\n"
        source.publish("acme", "device-fw", files)

        result = await orchestrator.scan_repository(repository.id)

        assert result.status == ScanStatus.COMPLETED
        assert result.artifacts_rejected == 1
        assert result.artifacts_deleted == 1
        assert ("requirement", "REQ-002") not in _artifacts(db_session, repository.id)

    @pytest.mark.asyncio
    async def test_unchanged_repository(self, orchestrator, source, repository, repo_files):
        source.publish("acme", "device-fw", repo_files())
        await orchestrator.scan_repository(repository.id)
        source.fetch_calls.clear()

        result = await orchestrator.scan_repository(repository.id)

        assert source.fetch_calls == []
        assert result.meta["change_set"]["changed"] == 0
        assert result.artifacts_created == 0
        assert result.artifacts_updated == 0
        assert result.meta["graph"]["total"] == 3


class TestScanFailures:
    """Runs that fail or partially fail."""

    @pytest.mark.asyncio
    async def test_missing_context_fails_run(
        self, db_session, orchestrator, source, repository, repo_files
    ):
        files = repo_files()
        del files[".gxp/system_context.md"]
        source.publish("acme", "device-fw", files)

        run_id = orchestrator.start_scan(repository.id)
        with pytest.raises(ScanValidationError) as exc_info:
            await orchestrator.execute_scan(run_id, "acme", "device-fw")

        assert exc_info.value.code == "SCAN_MISSING_CONTEXT"
        status = orchestrator.get_run_status(run_id)
        assert status.status == ScanStatus.FAILED
        assert status.phase == "discovery"
        assert status.error_message == "Missing .gxp/system_context.md in acme/device-fw"
        assert status.completed_at is not None
        assert source.fetch_calls == []

        db_session.refresh(repository)
        assert repository.last_scan_status == "failed"

    @pytest.mark.asyncio
    async def test_empty_artifact_root_fails_run(self, orchestrator, source, repository):
        source.publish("acme", "device-fw", {"README.md": "# nothing"})

        with pytest.raises(ScanValidationError) as exc_info:
            await orchestrator.scan_repository(repository.id)

        assert exc_info.value.code == "SCAN_NO_ARTIFACTS"

    @pytest.mark.asyncio
    async def test_source_outage_fails_run(self, orchestrator, source, repository):
        source.fail_discovery = True
        run_id = orchestrator.start_scan(repository.id)

        with pytest.raises(SourceError):
            await orchestrator.execute_scan(run_id, "acme", "device-fw")

        assert orchestrator.get_run_status(run_id).status == ScanStatus.FAILED

    @pytest.mark.asyncio
    async def test_fetch_failure_is_isolated(
        self, db_session, orchestrator, source, repository, repo_files
    ):
        source.publish("acme", "device-fw", repo_files())
        source.fail_paths.add(".gxp/requirements/REQ-002.md")

        result = await orchestrator.scan_repository(repository.id)

        assert result.status == ScanStatus.COMPLETED
        assert result.artifacts_created == 5
        assert result.meta["fetch_failures"] == [".gxp/requirements/REQ-002.md"]

        # The failed file is picked up by the next scan
        source.fail_paths.clear()
        source.fetch_calls.clear()
        retry = await orchestrator.scan_repository(repository.id)
        assert source.fetch_calls == [".gxp/requirements/REQ-002.md"]
        assert retry.artifacts_created == 1

    @pytest.mark.asyncio
    async def test_evidence_left_by_failed_run_is_verified_later(
        self, db_session, orchestrator, source, repository, repo_files, monkeypatch
    ):
        source.publish("acme", "device-fw", repo_files())

        def unavailable(repository_id):
            raise RuntimeError("graph store unavailable")

        monkeypatch.setattr(orchestrator.graph, "build_graph", unavailable)
        run_id = orchestrator.start_scan(repository.id)
        with pytest.raises(RuntimeError):
            await orchestrator.execute_scan(run_id, "acme", "device-fw")

        assert orchestrator.get_run_status(run_id).phase == "graph_build"
        evidence = _artifacts(db_session, repository.id)[("evidence", "EV-SPEC-001-001.jws")]
        assert evidence.signature_verified_at is None

        monkeypatch.undo()
        result = await orchestrator.scan_repository(repository.id)

        assert result.meta["change_set"]["changed"] == 0
        assert result.meta["evidence_check"] == {
            "total_processed": 1,
            "success_count": 1,
            "failure_count": 0,
        }
        db_session.refresh(evidence)
        assert evidence.is_signature_valid is True
        assert evidence.signature_verified_at is not None

    @pytest.mark.asyncio
    async def test_rejected_documents_are_counted(
        self, orchestrator, source, repository, repo_files
    ):
        files = repo_files()
        files[".gxp/requirements/overview.md"] = "---\ntitle: Overview\n---\nNo id here.\n"
        source.publish("acme", "device-fw", files)

        result = await orchestrator.scan_repository(repository.id)

        assert result.status == ScanStatus.COMPLETED
        assert result.artifacts_found == 7
        assert result.artifacts_created == 6
        assert result.artifacts_rejected == 1
        assert result.meta["rejections"][0]["file_path"] == ".gxp/requirements/overview.md"

    @pytest.mark.asyncio
    async def test_unclassified_files_are_skipped(
        self, orchestrator, source, repository, repo_files
    ):
        files = repo_files()
        files[".gxp/notes.txt"] = "scratch"
        source.publish("acme", "device-fw", files)

        result = await orchestrator.scan_repository(repository.id)

        assert result.meta["skipped_paths"] == [".gxp/notes.txt"]
        assert result.artifacts_created == 6

    @pytest.mark.asyncio
    async def test_completed_run_cannot_be_executed_again(
        self, orchestrator, source, repository, repo_files
    ):
        source.publish("acme", "device-fw", repo_files())
        result = await orchestrator.scan_repository(repository.id)

        with pytest.raises(ScanStateError):
            await orchestrator.execute_scan(result.id, "acme", "device-fw")


class TestProgress:
    """Progress reporting."""

    @pytest.mark.asyncio
    async def test_percentages_in_phase_order(
        self, orchestrator, source, repository, repo_files
    ):
        source.publish("acme", "device-fw", repo_files())
        seen = []

        await orchestrator.scan_repository(
            repository.id, on_progress=lambda percent, phase: seen.append(percent)
        )

        assert seen == [10, 20, 35, 50, 60, 70, 80, 90, 100]

    @pytest.mark.asyncio
    async def test_failing_sink_is_ignored(
        self, orchestrator, source, repository, repo_files
    ):
        source.publish("acme", "device-fw", repo_files())
        seen = []

        def sink(percent, phase):
            seen.append(phase.value)
            raise RuntimeError("sink down")

        result = await orchestrator.scan_repository(repository.id, on_progress=sink)

        assert result.status == ScanStatus.COMPLETED
        assert seen[0] == "discovery"
        assert seen[-1] == "notify"

    @pytest.mark.asyncio
    async def test_async_sink(self, orchestrator, source, repository, repo_files):
        source.publish("acme", "device-fw", repo_files())
        seen = []

        async def sink(percent, phase):
            seen.append(percent)

        result = await orchestrator.scan_repository(repository.id, on_progress=sink)

        assert result.status == ScanStatus.COMPLETED
        assert len(seen) == 9
