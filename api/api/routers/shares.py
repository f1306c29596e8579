"""Share link endpoints.

``POST /shares/{token}/resolve`` is the only unauthenticated route: the
viewer proves the subject identity in the body instead.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response

from api.dependencies import ContextDep, ServiceDep
from api.schemas import ResolveShareRequest, ShareLinkResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shares", tags=["shares"])


@router.post("/{token}/resolve")
async def resolve_share_link(token: str, body: ResolveShareRequest, service: ServiceDep) -> Response:
    """Consume one access of *token* and return the shared report."""
    artifact = await service.resolve_share_link(token, body.subject_proof)
    return Response(
        content=artifact.content,
        media_type=artifact.mime_type,
        headers={"Cache-Control": "no-store", "X-Artifact-ID": artifact.id},
    )


@router.delete("/{token}", response_model=ShareLinkResponse)
async def revoke_share_link(token: str, service: ServiceDep, context: ContextDep) -> ShareLinkResponse:
    """Permanently disable *token*; later resolves are denied as ``revoked``."""
    link = await service.revoke_share_link(token, context)
    return ShareLinkResponse.from_link(link, service.sharing.share_url(link))
