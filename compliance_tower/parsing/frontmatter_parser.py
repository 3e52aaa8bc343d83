"""
Markdown + YAML frontmatter parser for compliance documents.

Documents may spell the same field several ways (``parent_id``,
``parentId``, ``requirement``); this module is the only place those spellings
are known. Everything it returns uses the canonical field names of
ParsedArtifact.
"""

import json
import logging
import re
from datetime import date, datetime
from pathlib import PurePosixPath
from typing import Any, Dict, Optional, Tuple

import frontmatter
import yaml

from ..config import Settings, get_settings
from ..errors import SignatureFormatError
from ..evidence.jws import payload_timestamp, validate_structure
from ..schemas.artifacts import ParsedArtifact
from ..schemas.enums import ArtifactKind, RiskRating, VerificationTier
from .base import DocumentParser

logger = logging.getLogger(__name__)

REQUIREMENT_ID = re.compile(r"REQ-\d+")
STORY_ID = re.compile(r"US-\d+(?:-\d+)?")
SPEC_ID = re.compile(r"SPEC-\d+-\d+")
SECTION_HEADING = re.compile(r"^##\s+(.+)$", re.MULTILINE)

DIRECTORY_KINDS = (
    ("requirements", ArtifactKind.REQUIREMENT),
    ("user_stories", ArtifactKind.STORY),
    ("specs", ArtifactKind.SPEC),
)


def _first(data: Dict[str, Any], *keys: str) -> Any:
    """Value of the first key present with a non-empty value."""
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


def _json_safe(value: Any) -> Any:
    """Convert YAML-decoded values into JSON-storable ones."""
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return json.dumps(_json_safe(value), sort_keys=True)
    return str(value)


def _risk_rating(value: Any) -> Optional[RiskRating]:
    if value is None:
        return None
    try:
        return RiskRating(str(value).strip().upper())
    except ValueError:
        logger.warning(f"Ignoring unknown risk rating {value!r}")
        return None


def _verification_tier(value: Any) -> Optional[VerificationTier]:
    if value is None:
        return None
    try:
        return VerificationTier(str(value).strip().upper())
    except ValueError:
        logger.warning(f"Ignoring unknown verification tier {value!r}")
        return None


def _heading_title(markdown: str) -> Optional[str]:
    for line in markdown.splitlines():
        if line.strip():
            return re.sub(r"^#+\s*", "", line.strip()) or None
    return None


class FrontmatterParser(DocumentParser):
    """Parser for ``.gxp/`` documents: markdown with YAML frontmatter, and JWS evidence."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.artifact_root = self.settings.artifact_root.rstrip("/") + "/"

    def classify(self, path: str) -> Optional[ArtifactKind]:
        if not path.startswith(self.artifact_root):
            return None
        if path == self.settings.context_document_path:
            return ArtifactKind.CONTEXT

        # Evidence first: evidence file names embed spec ids
        if "/evidence/" in path and path.endswith(".jws"):
            return ArtifactKind.EVIDENCE
        if not path.endswith(".md"):
            return None
        # Directory placement wins over id-shaped file names
        for directory, kind in DIRECTORY_KINDS:
            if f"/{directory}/" in path:
                return kind
        name = PurePosixPath(path).name
        if SPEC_ID.search(name):
            return ArtifactKind.SPEC
        if STORY_ID.search(name):
            return ArtifactKind.STORY
        if REQUIREMENT_ID.search(name):
            return ArtifactKind.REQUIREMENT
        return None

    def _split(self, content: str, path: str) -> Tuple[Dict[str, Any], str]:
        try:
            post = frontmatter.loads(content)
        except (yaml.YAMLError, ValueError) as e:
            logger.warning(f"Failed to parse YAML frontmatter in {path}: {e}")
            return {}, content
        metadata = post.metadata if isinstance(post.metadata, dict) else {}
        return metadata, post.content

    def _natural_id(
        self, data: Dict[str, Any], path: str, pattern: re.Pattern
    ) -> Optional[str]:
        declared = _first(data, "gxp_id", "gxpId", "id")
        if declared is not None and str(declared).strip():
            return str(declared).strip()
        match = pattern.search(PurePosixPath(path).name)
        return match.group(0) if match else None

    def _document(
        self,
        kind: ArtifactKind,
        content: str,
        path: str,
        pattern: re.Pattern,
        parent_keys: Tuple[str, ...] = (),
    ) -> Tuple[Dict[str, Any], ParsedArtifact]:
        data, markdown = self._split(content, path)
        parent = _first(data, *parent_keys) if parent_keys else None
        record = ParsedArtifact(
            kind=kind,
            natural_id=self._natural_id(data, path, pattern),
            file_path=path,
            parent_ref="" if parent is None else str(parent),
            title=_text(data.get("title")) or _heading_title(markdown),
            description=_text(data.get("description")) or markdown.strip() or None,
            raw_content=content,
            meta=_json_safe(data),
        )
        return data, record

    def parse_context(self, content: str, path: str) -> ParsedArtifact:
        data, markdown = self._split(content, path)

        sections: Dict[str, str] = {}
        starts = list(SECTION_HEADING.finditer(markdown))
        for index, match in enumerate(starts):
            end = starts[index + 1].start() if index + 1 < len(starts) else len(markdown)
            sections[match.group(1).strip()] = markdown[match.end() : end].strip()

        project_name = _text(_first(data, "project_name", "projectName")) or "Unknown"
        attributes = {
            "project_name": project_name,
            "version": _text(_first(data, "version")) or "0.0.0",
            "validation_status": _text(
                _first(data, "validation_status", "validationStatus")
            )
            or "DRAFT",
            "intended_use": _text(_first(data, "intended_use", "intendedUse"))
            or sections.get("Intended Use"),
            "regulatory": sections.get("Regulatory") or sections.get("Regulatory Context"),
            "system_owner": _text(_first(data, "system_owner", "systemOwner")),
            "technical_contact": _text(
                _first(data, "technical_contact", "technicalContact")
            ),
            "sections": sections,
        }

        return ParsedArtifact(
            kind=ArtifactKind.CONTEXT,
            natural_id=PurePosixPath(path).stem,
            file_path=path,
            title=project_name,
            description=attributes["intended_use"],
            raw_content=content,
            risk_rating=_risk_rating(
                _first(data, "gxp_risk_rating", "gxpRiskRating", "risk")
            )
            or RiskRating.MEDIUM,
            attributes=_json_safe(attributes),
            meta=_json_safe(data),
        )

    def parse_requirement(self, content: str, path: str) -> ParsedArtifact:
        data, record = self._document(
            ArtifactKind.REQUIREMENT, content, path, REQUIREMENT_ID
        )
        record.risk_rating = _risk_rating(
            _first(data, "gxp_risk_rating", "risk", "gxpRiskRating")
        )
        record.attributes = _json_safe(
            {
                "acceptance_criteria": _first(
                    data, "acceptance_criteria", "acceptanceCriteria"
                )
            }
        )
        return record

    def parse_story(self, content: str, path: str) -> ParsedArtifact:
        data, record = self._document(
            ArtifactKind.STORY,
            content,
            path,
            STORY_ID,
            parent_keys=("parent_id", "requirement", "parentId"),
        )
        record.attributes = _json_safe(
            {
                "as_a": _first(data, "as_a", "asA"),
                "i_want": _first(data, "i_want", "iWant"),
                "so_that": _first(data, "so_that", "soThat"),
                "acceptance_criteria": _first(
                    data, "acceptance_criteria", "acceptanceCriteria"
                ),
                "status": data.get("status"),
            }
        )
        return record

    def parse_spec(self, content: str, path: str) -> ParsedArtifact:
        data, record = self._document(
            ArtifactKind.SPEC,
            content,
            path,
            SPEC_ID,
            parent_keys=("parent_id", "user_story", "parentId"),
        )
        record.verification_tier = _verification_tier(
            _first(data, "verification_tier", "tier", "verificationTier")
        )
        record.attributes = _json_safe(
            {
                "design_approach": _first(data, "design_approach", "designApproach"),
                "implementation_notes": _first(
                    data, "implementation_notes", "implementationNotes"
                ),
                "source_files": _first(data, "source_files", "sourceFiles"),
                "test_files": _first(data, "test_files", "testFiles"),
            }
        )
        return record

    def parse_evidence(self, content: str, path: str) -> ParsedArtifact:
        """Decode (without verifying) a JWS evidence document.

        A malformed document still yields a record keyed by its file name, so
        that verification can later mark it invalid.
        """
        record = ParsedArtifact(
            kind=ArtifactKind.EVIDENCE,
            natural_id=PurePosixPath(path).name,
            file_path=path,
            raw_content=content,
        )
        try:
            parts = validate_structure(content)
        except SignatureFormatError as e:
            logger.error(f"Failed to parse JWS evidence {path}: {e.message}")
            return record

        payload = parts.payload
        spec_id = _first(payload, "spec_id", "specId", "gxpId", "gxp_id")
        record.parent_ref = "" if spec_id is None else str(spec_id)
        record.title = _text(_first(payload, "title", "test_name"))
        record.verification_tier = _verification_tier(
            _first(payload, "verification_tier", "tier", "verificationTier")
        )
        record.jws_header = _json_safe(parts.header)
        record.jws_payload = _json_safe(payload)
        record.signature = parts.signature
        record.test_results = _json_safe(_first(payload, "test_results", "results"))
        record.system_state = _text(_first(payload, "system_state", "state"))
        record.evidence_timestamp = payload_timestamp(payload)
        return record
