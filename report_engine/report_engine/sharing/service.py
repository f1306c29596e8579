"""Share links: bounded, revocable external access to a completed report.

A link is bound to one job, one subject identity, an expiry and a maximum
access count.  The subject identity (a birth date or an identity claim) is
stored only as an HMAC digest; a viewer must present the same fact to open
the link.

Consuming an access is a single conditional ``UPDATE`` that checks expiry,
revocation and the remaining count and increments the counter, so a burst
of concurrent resolves can never exceed ``max_access_count``.  The subject
proof is checked before that update; a wrong proof does not use up an
access.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from report_engine.config import Settings
from report_engine.documents.store import DocumentStore
from report_engine.errors import (
    AccessDeniedError,
    JobStateError,
    MissingSubjectBindingError,
    NotFoundError,
    ValidationError,
)
from report_engine.models.analysis import RenderedArtifact
from report_engine.models.job import JobStage, RequestContext
from report_engine.models.sharing import ShareLink, SubjectBinding
from report_engine.pipeline.orchestrator import ARTIFACT_COLLECTION
from report_engine.state.database import session_scope
from report_engine.state.repository import JobRepository, ShareLinkRepository, share_link_from_row
from report_engine.state.tables import ShareLinkTable

logger = logging.getLogger(__name__)

# 24 random bytes -> 32 URL-safe characters.
_TOKEN_BYTES = 24


def _token_hint(token: str) -> str:
    return f"{token[:6]}..." if len(token) > 6 else "..."


class ShareLinkService:
    """Issue, resolve and revoke share links.

    Parameters
    ----------
    session_factory:
        Factory for short-lived sessions.
    documents:
        Store holding rendered artifacts.
    settings:
        Expiry/access bounds and the HMAC key for subject bindings.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        documents: DocumentStore,
        settings: Settings,
    ) -> None:
        self._session_factory = session_factory
        self._documents = documents
        self._settings = settings
        self._key = settings.share_binding_secret.get_secret_value().encode("utf-8")

    async def issue(
        self,
        job_id: str,
        context: RequestContext,
        subject_binding: SubjectBinding | None,
        expiry_days: int | None = None,
        max_access_count: int | None = None,
    ) -> ShareLink:
        """Create a share link for the COMPLETED job *job_id*.

        Raises
        ------
        MissingSubjectBindingError
            No binding was supplied or its value cannot be parsed.
        ValidationError
            Expiry or access bounds are out of range.
        NotFoundError
            The job does not exist or belongs to another account.
        JobStateError
            The job is not COMPLETED.
        """
        digest = self._digest(self._require_binding(subject_binding))
        assert subject_binding is not None  # noqa: S101
        expiry_days = self._settings.share_default_expiry_days if expiry_days is None else expiry_days
        max_access_count = (
            self._settings.share_default_max_access_count if max_access_count is None else max_access_count
        )
        if not 1 <= expiry_days <= self._settings.share_max_expiry_days:
            raise ValidationError(f"expiry_days must be between 1 and {self._settings.share_max_expiry_days}")
        if not 1 <= max_access_count <= self._settings.share_max_access_count:
            raise ValidationError(f"max_access_count must be between 1 and {self._settings.share_max_access_count}")

        now = datetime.now(UTC)
        async with session_scope(self._session_factory) as session:
            job = await JobRepository(session).get(job_id)
            if job is None or job.account_id != context.account_id:
                raise NotFoundError(f"Report job {job_id!r} not found", job_id=job_id)
            if job.stage != JobStage.COMPLETED.value:
                raise JobStateError(f"Job {job_id} is {job.stage}; only completed reports can be shared", job_id=job_id)

            row = await ShareLinkRepository(session).create(
                secrets.token_urlsafe(_TOKEN_BYTES),
                job_id=job_id,
                binding_kind=subject_binding.kind.value,
                binding_digest=digest,
                expires_at=now + timedelta(days=expiry_days),
                max_access_count=max_access_count,
                created_by=context.requester_id,
            )
            link = share_link_from_row(row)

        logger.info(
            "Issued share link %s for job %s (expires in %d day(s), %d access(es))",
            _token_hint(link.token),
            job_id,
            expiry_days,
            max_access_count,
        )
        return link

    async def resolve(self, token: str, subject_proof: SubjectBinding | None) -> RenderedArtifact:
        """Consume one access of *token* and return the report artifact.

        Raises
        ------
        AccessDeniedError
            With ``reason`` ``not_found``, ``subject_mismatch``, ``revoked``,
            ``expired`` or ``exhausted``.  Denials are expected outcomes and
            are logged at INFO.
        """
        hint = _token_hint(token)
        now = datetime.now(UTC)
        async with session_scope(self._session_factory) as session:
            links = ShareLinkRepository(session)
            row = await links.get(token)
            if row is None:
                raise self._deny("not_found", hint)
            if not self._proof_matches(subject_proof, row.binding_kind, row.binding_digest):
                raise self._deny("subject_mismatch", hint)
            if not await links.consume(token, now):
                current = await links.get(token)
                raise self._deny(self._denial_reason(current, now), hint)
            job = await JobRepository(session).get(row.job_id)
            artifact_ref = job.rendered_artifact_ref if job is not None else None

        if artifact_ref is None:
            raise NotFoundError(f"Shared report for link {hint} has no artifact")
        doc = await self._documents.get(ARTIFACT_COLLECTION, artifact_ref)
        if doc is None:
            raise NotFoundError(f"Artifact {artifact_ref!r} is missing")
        logger.info("Share link %s resolved for job %s", hint, row.job_id)
        return RenderedArtifact.model_validate(doc)

    async def revoke(self, token: str, context: RequestContext) -> ShareLink:
        """Permanently disable *token*.  Revoking twice is a no-op."""
        async with session_scope(self._session_factory) as session:
            links = ShareLinkRepository(session)
            row = await links.get(token)
            job = await JobRepository(session).get(row.job_id) if row is not None else None
            if row is None or job is None or job.account_id != context.account_id:
                raise NotFoundError(f"Share link {_token_hint(token)} not found")
            if await links.revoke(token, datetime.now(UTC)):
                logger.info("Share link %s revoked by %s", _token_hint(token), context.requester_id)
            row = await links.get(token)
            assert row is not None  # noqa: S101
            return share_link_from_row(row)

    async def get(self, token: str) -> ShareLink:
        async with session_scope(self._session_factory) as session:
            row = await ShareLinkRepository(session).get(token)
            if row is None:
                raise NotFoundError(f"Share link {_token_hint(token)} not found")
            return share_link_from_row(row)

    async def list_for_job(self, job_id: str, context: RequestContext) -> list[ShareLink]:
        async with session_scope(self._session_factory) as session:
            job = await JobRepository(session).get(job_id)
            if job is None or job.account_id != context.account_id:
                raise NotFoundError(f"Report job {job_id!r} not found", job_id=job_id)
            rows = await ShareLinkRepository(session).list_for_job(job_id)
            return [share_link_from_row(row) for row in rows]

    def share_url(self, link: ShareLink) -> str:
        return f"{self._settings.share_public_base_url.rstrip('/')}/{link.token}"

    # -- Internal helpers ---------------------------------------------------

    @staticmethod
    def _require_binding(binding: SubjectBinding | None) -> str:
        if binding is None or not binding.value.strip():
            raise MissingSubjectBindingError("A subject binding (birth date or identity claim) is required")
        try:
            return binding.normalized()
        except ValueError as exc:
            raise MissingSubjectBindingError(f"Subject binding {binding.kind.value} could not be parsed") from exc

    def _digest(self, normalized: str) -> str:
        return hmac.new(self._key, normalized.encode("utf-8"), hashlib.sha256).hexdigest()

    def _proof_matches(self, proof: SubjectBinding | None, kind: str, digest: str) -> bool:
        if proof is None or proof.kind.value != kind:
            return False
        try:
            candidate = self._digest(proof.normalized())
        except ValueError:
            return False
        return hmac.compare_digest(candidate, digest)

    @staticmethod
    def _denial_reason(row: ShareLinkTable | None, now: datetime) -> str:
        if row is None:
            return "not_found"
        if row.revoked_at is not None:
            return "revoked"
        if row.expires_at <= now:
            return "expired"
        return "exhausted"

    @staticmethod
    def _deny(reason: str, hint: str) -> AccessDeniedError:
        logger.info("Share link %s denied: %s", hint, reason)
        return AccessDeniedError(reason, token_hint=hint)
