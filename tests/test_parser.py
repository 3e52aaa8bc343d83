"""
Tests for the frontmatter document parser.

Verifies:
- path classification into artifact kinds
- field spelling variants map onto canonical fields
- evidence decoding without verification
- id fallback from file names
"""

import pytest

from compliance_tower.schemas.enums import ArtifactKind, RiskRating, VerificationTier
from factories import SYSTEM_CONTEXT, b64url, evidence_payload, json_b64, requirement, story


class TestClassify:
    """Mapping repository paths to artifact kinds."""

    @pytest.mark.parametrize(
        "path,kind",
        [
            (".gxp/system_context.md", ArtifactKind.CONTEXT),
            (".gxp/requirements/REQ-001.md", ArtifactKind.REQUIREMENT),
            (".gxp/user_stories/US-001.md", ArtifactKind.STORY),
            (".gxp/specs/SPEC-001-001.md", ArtifactKind.SPEC),
            (".gxp/evidence/EV-SPEC-001-001.jws", ArtifactKind.EVIDENCE),
            (".gxp/misc/SPEC-002-003.md", ArtifactKind.SPEC),
            (".gxp/misc/US-004.md", ArtifactKind.STORY),
            (".gxp/misc/REQ-009.md", ArtifactKind.REQUIREMENT),
            # Directory wins over an id-shaped file name
            (".gxp/requirements/SPEC-001-001.md", ArtifactKind.REQUIREMENT),
        ],
    )
    def test_artifact_paths(self, parser, path, kind):
        assert parser.classify(path) == kind

    @pytest.mark.parametrize(
        "path",
        [
            "README.md",
            "docs/REQ-001.md",
            ".gxp/requirements/REQ-001.txt",
            ".gxp/evidence/EV-1.json",
            ".gxp/notes.md",
            ".gxpx/requirements/REQ-001.md",
        ],
    )
    def test_non_artifact_paths(self, parser, path):
        assert parser.classify(path) is None


class TestDocuments:
    """Parsing markdown documents with YAML frontmatter."""

    def test_context(self, parser):
        record = parser.parse(ArtifactKind.CONTEXT, SYSTEM_CONTEXT, ".gxp/system_context.md")

        assert record.kind == ArtifactKind.CONTEXT
        assert record.natural_id == "system_context"
        assert record.title == "Infusion Pump Firmware"
        assert record.risk_rating == RiskRating.HIGH
        assert record.attributes["project_name"] == "Infusion Pump Firmware"
        assert record.attributes["validation_status"] == "VALIDATED"
        assert record.attributes["intended_use"] == "Controls dosage delivery."
        assert record.attributes["regulatory"] == "21 CFR Part 11"
        assert set(record.attributes["sections"]) == {"Intended Use", "Regulatory"}

    def test_context_defaults(self, parser):
        record = parser.parse_context("# Bare\n", ".gxp/system_context.md")

        assert record.attributes["project_name"] == "Unknown"
        assert record.attributes["version"] == "0.0.0"
        assert record.attributes["validation_status"] == "DRAFT"
        assert record.risk_rating == RiskRating.MEDIUM

    def test_requirement(self, parser):
        record = parser.parse(
            ArtifactKind.REQUIREMENT,
            requirement("REQ-001", "Log every dose", "high"),
            ".gxp/requirements/REQ-001.md",
        )

        assert record.natural_id == "REQ-001"
        assert record.title == "Log every dose"
        assert record.risk_rating == RiskRating.HIGH
        assert record.parent_ref == ""
        assert record.attributes["acceptance_criteria"] == ["Documented"]
        assert record.meta["id"] == "REQ-001"

    def test_story_parent_spellings(self, parser):
        for key in ("parent_id", "requirement", "parentId"):
            content = f"---\nid: US-002\n{key}: REQ-007\n---\nBody\n"
            record = parser.parse_story(content, ".gxp/user_stories/US-002.md")
            assert record.parent_ref == "REQ-007"

    def test_story_fields(self, parser):
        record = parser.parse_story(story("US-001", "REQ-001"), ".gxp/user_stories/US-001.md")

        assert record.attributes["as_a"] == "nurse"
        assert record.attributes["i_want"] == "to program a dose"
        assert record.attributes["so_that"] == "patients are treated"

    def test_spec_camel_case(self, parser):
        content = (
            "---\ngxpId: SPEC-003-001\nuser_story: US-003\n"
            "verificationTier: pq\ndesignApproach: layered\n---\n"
        )
        record = parser.parse_spec(content, ".gxp/specs/anything.md")

        assert record.natural_id == "SPEC-003-001"
        assert record.parent_ref == "US-003"
        assert record.verification_tier == VerificationTier.PQ
        assert record.attributes["design_approach"] == "layered"

    def test_unknown_tier_dropped(self, parser):
        content = "---\nid: SPEC-003-001\ntier: XQ\n---\n"
        record = parser.parse_spec(content, ".gxp/specs/SPEC-003-001.md")
        assert record.verification_tier is None

    def test_id_from_file_name(self, parser):
        record = parser.parse_requirement(
            "---\ntitle: No id\n---\n", ".gxp/requirements/REQ-042.md"
        )
        assert record.natural_id == "REQ-042"

    def test_missing_id(self, parser):
        record = parser.parse_requirement(
            "---\ntitle: No id\n---\n", ".gxp/requirements/overview.md"
        )
        assert record.natural_id is None
        assert not record.has_natural_id

    def test_title_from_heading(self, parser):
        record = parser.parse_requirement(
            "---\nid: REQ-005\n---\n# Alarm handling\n\nText\n",
            ".gxp/requirements/REQ-005.md",
        )
        assert record.title == "Alarm handling"

    def test_bad_yaml_keeps_file_name_id(self, parser):
        content = "---\nid: [unclosed\n---\nBody\n"
        record = parser.parse_requirement(content, ".gxp/requirements/REQ-010.md")

        assert record.natural_id == "REQ-010"
        assert record.meta == {}


class TestEvidence:
    """Decoding JWS evidence without verifying it."""

    def test_decodes_payload(self, parser, sign):
        token = sign(evidence_payload("SPEC-001-001", system_state="nominal"))
        record = parser.parse(
            ArtifactKind.EVIDENCE, token, ".gxp/evidence/EV-SPEC-001-001.jws"
        )

        assert record.natural_id == "EV-SPEC-001-001.jws"
        assert record.parent_ref == "SPEC-001-001"
        assert record.title == "SPEC-001-001 passes"
        assert record.verification_tier == VerificationTier.OQ
        assert record.jws_header["alg"] == "ES256"
        assert record.test_results == {"passed": 12, "failed": 0}
        assert record.system_state == "nominal"
        assert record.evidence_timestamp.year == 2026
        assert record.signature == token.split(".")[2]

    def test_spec_reference_spellings(self, parser):
        token = f"{json_b64({'alg': 'ES256'})}.{json_b64({'gxpId': 'SPEC-009-001'})}.sig"
        record = parser.parse_evidence(token, ".gxp/evidence/EV-9.jws")
        assert record.parent_ref == "SPEC-009-001"

    def test_malformed_evidence_keeps_file_name(self, parser):
        token = f"{b64url(b'garbage')}.payload"
        record = parser.parse_evidence(token, ".gxp/evidence/EV-BAD.jws")

        assert record.natural_id == "EV-BAD.jws"
        assert record.parent_ref == ""
        assert record.raw_content == token
        assert record.jws_payload is None
