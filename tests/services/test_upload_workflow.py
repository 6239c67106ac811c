"""Tests for redeeming upload tokens."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from tests.conftest import BATCH_ID, FIXED_NOW, REFERENCE
from x402_swarm.core.time import to_epoch_ms
from x402_swarm.services.errors import (
    InvalidTokenError,
    MissingUploadFieldError,
    PayloadTooLargeError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    UploadFailedError,
)
from x402_swarm.services.replay import MemoryReplayGuard
from x402_swarm.services.storage import UploadedFile
from x402_swarm.services.token_codec import TokenCodec, UploadToken
from x402_swarm.services.upload import MEGABYTE, UploadWorkflow

NONCE = "4e" * 16


def _token(codec: TokenCodec, *, duration: str = "7d", expiry: int | None = None) -> str:
    if expiry is None:
        expiry = to_epoch_ms(FIXED_NOW + timedelta(minutes=10))
    return codec.encode(
        UploadToken(batch_id=BATCH_ID, depth=19, duration=duration, nonce=NONCE, expiry=expiry)
    )


def _files() -> list[UploadedFile]:
    return [UploadedFile(name="hello.txt", content_type="text/plain", data=b"hello swarm")]


@pytest.mark.asyncio
async def test_upload_succeeds(
    upload_workflow: UploadWorkflow, codec: TokenCodec, uploader: AsyncMock
) -> None:
    files = _files()

    completed = await upload_workflow.upload(_token(codec), files)

    assert completed.reference == REFERENCE
    assert completed.files_uploaded == 1
    assert completed.duration == "7d"
    assert completed.expires_at == FIXED_NOW + timedelta(hours=168)
    uploader.upload_files.assert_awaited_once_with(files, batch_id=BATCH_ID, depth=19)


@pytest.mark.asyncio
async def test_expiry_comes_from_token_tier(
    upload_workflow: UploadWorkflow, codec: TokenCodec
) -> None:
    completed = await upload_workflow.upload(_token(codec, duration="30d"), _files())
    assert completed.expires_at == FIXED_NOW + timedelta(hours=720)


@pytest.mark.asyncio
async def test_expired_token_keeps_nonce_unused(
    upload_workflow: UploadWorkflow,
    codec: TokenCodec,
    replay_guard: MemoryReplayGuard,
    uploader: AsyncMock,
) -> None:
    token = _token(codec, expiry=to_epoch_ms(FIXED_NOW) - 1)

    with pytest.raises(TokenExpiredError):
        await upload_workflow.upload(token, _files())

    uploader.upload_files.assert_not_awaited()
    assert len(replay_guard) == 0


@pytest.mark.asyncio
async def test_token_valid_until_expiry_instant(
    upload_workflow: UploadWorkflow, codec: TokenCodec
) -> None:
    token = _token(codec, expiry=to_epoch_ms(FIXED_NOW))
    completed = await upload_workflow.upload(token, _files())
    assert completed.files_uploaded == 1


@pytest.mark.asyncio
async def test_second_redemption_is_rejected(
    upload_workflow: UploadWorkflow, codec: TokenCodec, uploader: AsyncMock
) -> None:
    token = _token(codec)
    await upload_workflow.upload(token, _files())

    with pytest.raises(TokenAlreadyUsedError):
        await upload_workflow.upload(token, _files())

    assert uploader.upload_files.await_count == 1


@pytest.mark.asyncio
async def test_concurrent_redemptions_have_one_winner(
    upload_workflow: UploadWorkflow, codec: TokenCodec, uploader: AsyncMock
) -> None:
    token = _token(codec)

    results = await asyncio.gather(
        upload_workflow.upload(token, _files()),
        upload_workflow.upload(token, _files()),
        return_exceptions=True,
    )

    assert sum(isinstance(result, TokenAlreadyUsedError) for result in results) == 1
    assert uploader.upload_files.await_count == 1


@pytest.mark.asyncio
async def test_oversized_upload_burns_token(
    upload_workflow: UploadWorkflow,
    codec: TokenCodec,
    replay_guard: MemoryReplayGuard,
    uploader: AsyncMock,
) -> None:
    chunk = b"\x00" * MEGABYTE
    files = [
        UploadedFile(name=f"part-{index}.bin", content_type="application/octet-stream", data=chunk)
        for index in range(101)
    ]

    with pytest.raises(PayloadTooLargeError, match=r"limit of 100MB \(got 101\.00MB\)"):
        await upload_workflow.upload(_token(codec), files)

    uploader.upload_files.assert_not_awaited()
    assert await replay_guard.consume(NONCE) is False


@pytest.mark.asyncio
async def test_uploader_failure_burns_token(
    upload_workflow: UploadWorkflow, codec: TokenCodec, uploader: AsyncMock
) -> None:
    uploader.upload_files.side_effect = RuntimeError("gateway returned 502")
    token = _token(codec)

    with pytest.raises(UploadFailedError) as excinfo:
        await upload_workflow.upload(token, _files())

    assert excinfo.value.to_body() == {"error": "Upload failed", "details": "gateway returned 502"}
    with pytest.raises(TokenAlreadyUsedError):
        await upload_workflow.upload(token, _files())


@pytest.mark.asyncio
@pytest.mark.parametrize("token", [None, ""])
async def test_missing_token(upload_workflow: UploadWorkflow, token: str | None) -> None:
    with pytest.raises(MissingUploadFieldError):
        await upload_workflow.upload(token, _files())


@pytest.mark.asyncio
async def test_garbage_token(upload_workflow: UploadWorkflow) -> None:
    with pytest.raises(InvalidTokenError):
        await upload_workflow.upload("definitely-not-a-token", _files())


@pytest.mark.asyncio
async def test_token_with_unknown_tier_is_invalid(
    upload_workflow: UploadWorkflow, codec: TokenCodec
) -> None:
    with pytest.raises(InvalidTokenError):
        await upload_workflow.upload(_token(codec, duration="1y"), _files())


@pytest.mark.asyncio
async def test_missing_files_burns_token(
    upload_workflow: UploadWorkflow, codec: TokenCodec, replay_guard: MemoryReplayGuard
) -> None:
    with pytest.raises(MissingUploadFieldError):
        await upload_workflow.upload(_token(codec), [])

    assert await replay_guard.consume(NONCE) is False


def test_size_cap_cannot_exceed_batch_ceiling(codec: TokenCodec) -> None:
    with pytest.raises(ValueError):
        UploadWorkflow(codec, MemoryReplayGuard(), AsyncMock(), max_total_size=200 * MEGABYTE)
