"""Test configuration and fixtures."""

from typing import Any, Callable, Dict, Optional

import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from compliance_tower.config import Settings
from compliance_tower.db import audit_models, models  # noqa: F401
from compliance_tower.db.base import Base
from compliance_tower.db.models import ArtifactModel
from compliance_tower.db.services import RepositoryService
from compliance_tower.evidence.jws import JwsVerifier
from compliance_tower.evidence.keystore import Keystore, parse_public_key
from compliance_tower.parsing.frontmatter_parser import FrontmatterParser
from factories import SYSTEM_CONTEXT, evidence_payload, requirement, spec, story


def public_pem(private_key) -> str:
    return (
        private_key.public_key()
        .public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode("ascii")
    )


@pytest.fixture(scope="session")
def signing_key():
    """EC P-256 key used to sign evidence in tests."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def other_signing_key():
    """A key the verifier does not know about."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def signing_pem(signing_key) -> str:
    return public_pem(signing_key)


@pytest.fixture
def sign(signing_key) -> Callable[..., str]:
    """Return a function producing compact ES256 JWS evidence."""

    def _sign(
        payload: Dict[str, Any], key=None, headers: Optional[Dict[str, Any]] = None
    ) -> str:
        return jwt.encode(
            payload, key or signing_key, algorithm="ES256", headers=headers
        )

    return _sign


@pytest.fixture
def settings() -> Settings:
    """Test settings: default layout, fallback disabled."""
    return Settings(
        environment="test",
        jws_public_keys=None,
        jws_allow_unsigned_in_dev=False,
        jws_max_age_seconds=None,
        progress_timeout_seconds=1.0,
    )


@pytest.fixture
def verifier(settings, signing_pem) -> JwsVerifier:
    keystore = Keystore(keys=(parse_public_key(signing_pem),))
    return JwsVerifier(keystore=keystore, settings=settings)


@pytest.fixture
def parser(settings) -> FrontmatterParser:
    return FrontmatterParser(settings)


@pytest.fixture
def engine():
    """Fresh in-memory database for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def repository(db_session):
    """A registered repository."""
    return RepositoryService(db_session).create("acme", "device-fw")


@pytest.fixture
def add_artifact(db_session, repository) -> Callable[..., ArtifactModel]:
    """Insert an artifact row directly, bypassing the scan pipeline."""

    def _add(kind: str, natural_id: str, parent_ref: str = "", **fields) -> ArtifactModel:
        fields.setdefault("file_path", f".gxp/{kind}/{natural_id}")
        artifact = ArtifactModel(
            repository_id=repository.id,
            kind=kind,
            natural_id=natural_id,
            parent_ref=parent_ref,
            attributes={},
            meta={},
            **fields,
        )
        db_session.add(artifact)
        db_session.flush()
        return artifact

    return _add


@pytest.fixture
def repo_files(sign) -> Callable[[], Dict[str, str]]:
    """Return a function building a consistent artifact tree."""

    def _files() -> Dict[str, str]:
        return {
            ".gxp/system_context.md": SYSTEM_CONTEXT,
            ".gxp/requirements/REQ-001.md": requirement("REQ-001", "Log every dose", "HIGH"),
            ".gxp/requirements/REQ-002.md": requirement("REQ-002", "Alarm on occlusion"),
            ".gxp/user_stories/US-001.md": story("US-001", "REQ-001"),
            ".gxp/specs/SPEC-001-001.md": spec("SPEC-001-001", "US-001"),
            ".gxp/evidence/EV-SPEC-001-001.jws": sign(evidence_payload("SPEC-001-001")),
            "README.md": "# device-fw\n",
        }

    return _files
