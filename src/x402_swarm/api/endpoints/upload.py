"""Upload endpoint: redeem an upload token for Swarm storage."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, File, Form, UploadFile

from x402_swarm.api.dependencies import UploadWorkflowDep
from x402_swarm.core.time import isoformat_z
from x402_swarm.schemas.storage import UploadResponse
from x402_swarm.services.errors import PayloadTooLargeError
from x402_swarm.services.storage import UploadedFile
from x402_swarm.services.upload import INTERNAL_MAX_FILE_SIZE, MEGABYTE

router = APIRouter(tags=["storage"])


async def _read_files(files: list[UploadFile]) -> list[UploadedFile]:
    received: list[UploadedFile] = []
    for item in files:
        data = await item.read()
        # Per-file ceiling of the batch; checked before the token is touched.
        if len(data) > INTERNAL_MAX_FILE_SIZE:
            raise PayloadTooLargeError(
                f"File {item.filename!r} exceeds the per-file limit of "
                f"{INTERNAL_MAX_FILE_SIZE / MEGABYTE:.2f}MB"
            )
        received.append(
            UploadedFile(
                name=item.filename or "file",
                content_type=item.content_type or "application/octet-stream",
                data=data,
            )
        )
    return received


@router.post("/upload", response_model=UploadResponse)
async def upload_files(
    workflow: UploadWorkflowDep,
    upload_token: Annotated[str | None, Form(alias="uploadToken")] = None,
    files: Annotated[list[UploadFile] | None, File()] = None,
) -> UploadResponse:
    """Upload files to Swarm using a token from ``/prepare``.

    Args:
        workflow: Upload workflow
        upload_token: Token received from ``/prepare``
        files: Files to upload, 100MB in total at most

    Returns:
        Gateway URL, Swarm reference and CID of the uploaded content
    """
    received = await _read_files(files or [])
    completed = await workflow.upload(upload_token, received)
    return UploadResponse(
        url=completed.url,
        reference=completed.reference,
        cid=completed.cid,
        expiresAt=isoformat_z(completed.expires_at),
        duration=completed.duration,
        filesUploaded=completed.files_uploaded,
    )
