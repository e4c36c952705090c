"""Async uploader built on an anyio task group."""

from __future__ import annotations

import inspect
import io
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import anyio
import httpx

from .._http import AsyncTransport, BytesBody, RequestBody, create_upload_async_client, debug
from ..context import AsyncRestContext
from ..envelope import Envelope
from ..errors import HTTPError, RestIOError, UploadError
from ..types import AsyncUploadProgressFn, Param
from ._core import (
    DEFAULT_MAX_PART_SIZE,
    DEFAULT_PARALLEL_UPLOADS,
    SPOOL_CHUNK_SIZE,
    MiB,
    S3Target,
    SignV4Reply,
    UploadPlan,
    amz_timestamp,
    check_put_size,
    complete_document,
    content_range,
    parse_upload_id,
    payload_sha256,
    remaining_bytes,
    s3_part_size,
    sign_string,
    sign_v4_path,
    store_etag,
)

SendPart = Callable[[int, bytes], Awaitable[None]]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def _read(reader: Any, size: int = -1) -> bytes:
    try:
        chunk = await _maybe_await(reader.read(size))
    except OSError as exc:
        raise RestIOError(str(exc)) from exc
    return bytes(chunk or b"")


async def _read_part(reader: Any, limit: int) -> bytes:
    buffer = bytearray()
    while len(buffer) < limit:
        chunk = await _read(reader, min(SPOOL_CHUNK_SIZE, limit - len(buffer)))
        if not chunk:
            break
        buffer.extend(chunk)
    return bytes(buffer)


async def probe_size_async(reader: Any) -> int | None:
    """Like ``probe_size`` but also accepts readers with async ``tell``/``seek``."""
    try:
        position = await _maybe_await(reader.tell())
        await _maybe_await(reader.seek(0, io.SEEK_END))
        end = await _maybe_await(reader.tell())
        await _maybe_await(reader.seek(position, io.SEEK_SET))
    except (AttributeError, OSError, TypeError, ValueError):
        return None
    return remaining_bytes(position, end)


class AsyncUploader:
    """Async counterpart of ``Uploader``.

    ``reader.read`` may be a plain or a coroutine method, and parts are
    spooled in memory. ``progress`` may be a plain function or a coroutine
    function.
    """

    def __init__(self, plan: UploadPlan, ctx: AsyncRestContext) -> None:
        self.plan = plan
        self.ctx = ctx
        self.max_part_size = DEFAULT_MAX_PART_SIZE
        self.parallel_uploads = DEFAULT_PARALLEL_UPLOADS
        self.progress: AsyncUploadProgressFn | None = None
        self._transport: AsyncTransport | None = None
        self._failure: Exception | None = None
        self._etags: list[str] = []
        self._upload_id: str | None = None

    @classmethod
    def prepare(cls, data: Mapping[str, Any], ctx: AsyncRestContext) -> AsyncUploader:
        return cls(UploadPlan.from_data(data), ctx)

    def set_progress(self, progress: AsyncUploadProgressFn | None) -> None:
        self.progress = progress

    @property
    def etags(self) -> list[str]:
        return list(self._etags)

    async def _report(self, delta: int) -> None:
        if self.progress is not None:
            await _maybe_await(self.progress(delta))

    async def do_upload(self, reader: Any, mime_type: str, size: int | None = None) -> Envelope:
        strategy = self.plan.choose(size)
        debug(self.ctx.config, f"upload strategy {strategy} (size: {size})")
        await self._report(0)

        self._transport = AsyncTransport(create_upload_async_client(self.ctx.config))
        try:
            if strategy == "block":
                await self._block_upload(reader, mime_type)
            elif strategy == "s3":
                await self._s3_upload(reader, mime_type, size)
            else:
                await self._put_upload(reader, mime_type, size)
        finally:
            await self._transport.aclose()
            self._transport = None

        return await self.ctx.do_request(self.plan.complete, "POST", {})

    async def _send(
        self,
        method: str,
        url: str,
        body: RequestBody,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        assert self._transport is not None
        return await self._transport.send(method, url, body=body, headers=headers)

    async def _put_upload(self, reader: Any, mime_type: str, size: int | None) -> None:
        size = check_put_size(size)
        payload = await _read(reader)
        response = await self._send("PUT", self.plan.put, BytesBody(payload, mime_type))
        if not response.is_success:
            raise HTTPError(
                response.status_code, f"PUT upload failed with status {response.status_code}"
            )
        await self._report(size)

    async def _block_upload(self, reader: Any, mime_type: str) -> None:
        blocksize = self.plan.blocksize
        assert blocksize is not None

        async def send_part(part_number: int, data: bytes) -> None:
            start = (part_number - 1) * blocksize
            response = await self._send(
                "PUT",
                self.plan.put,
                BytesBody(data, mime_type),
                {"Content-Range": content_range(start, len(data))},
            )
            if not response.is_success:
                raise HTTPError(
                    response.status_code,
                    f"Part upload failed with status {response.status_code}",
                )
            await self._report(len(data))

        await self._run_parts(reader, blocksize, send_part, send_empty_first=False)

    async def _s3_upload(self, reader: Any, mime_type: str, size: int | None) -> None:
        target = self.plan.s3
        assert target is not None
        self._etags = []
        part_bytes = s3_part_size(size, self.max_part_size) * MiB

        response = await self._s3_request(
            target,
            "POST",
            "uploads=",
            b"",
            {"Content-Type": mime_type, "X-Amz-Acl": "private"},
        )
        self._upload_id = parse_upload_id(response.content)

        async def send_part(part_number: int, data: bytes) -> None:
            query = f"partNumber={part_number}&uploadId={self._upload_id}"
            part_response = await self._s3_request(target, "PUT", query, data)
            etag = part_response.headers.get("ETag")
            if etag is None:
                raise UploadError("Missing ETag in AWS response")
            store_etag(self._etags, part_number, etag)
            await self._report(len(data))

        await self._run_parts(reader, part_bytes, send_part, send_empty_first=True)

        await self._s3_request(
            target,
            "POST",
            f"uploadId={self._upload_id}",
            complete_document(self._etags),
            {"Content-Type": "text/xml"},
        )

    async def _s3_request(
        self,
        target: S3Target,
        method: str,
        query: str,
        payload: bytes,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        timestamp = amz_timestamp()
        reply = await self.ctx.apply(
            sign_v4_path(target),
            "POST",
            {"headers": sign_string(target, method, query, timestamp)},
            into=SignV4Reply,
        )

        request_headers = dict(headers or {})
        request_headers["X-Amz-Content-Sha256"] = payload_sha256(payload)
        request_headers["X-Amz-Date"] = timestamp
        request_headers["Authorization"] = reply.authorization

        response = await self._send(method, target.url(query), BytesBody(payload), request_headers)
        if not response.is_success:
            raise HTTPError(response.status_code, response.text)
        return response

    async def _run_parts(
        self,
        reader: Any,
        part_bytes: int,
        send_part: SendPart,
        *,
        send_empty_first: bool,
    ) -> None:
        """Read numbered parts and send them from a task group.

        The first failure cancels the whole group, in-flight parts included,
        and is raised once the group has exited.
        """
        limiter = anyio.Semaphore(self.parallel_uploads)
        self._failure = None

        async with anyio.create_task_group() as task_group:

            def fail(exc: Exception) -> None:
                if self._failure is None:
                    self._failure = exc
                task_group.cancel_scope.cancel()

            async def run(part_number: int, data: bytes) -> None:
                try:
                    await send_part(part_number, data)
                except Exception as exc:
                    fail(exc)
                finally:
                    limiter.release()

            part_number = 0
            while self._failure is None:
                await limiter.acquire()
                part_number += 1
                try:
                    data = await _read_part(reader, part_bytes)
                except Exception as exc:
                    limiter.release()
                    fail(exc)
                    break
                if not data and not (send_empty_first and part_number == 1):
                    limiter.release()
                    break
                task_group.start_soon(run, part_number, data)
                if len(data) < part_bytes:
                    break

        if self._failure is not None:
            raise self._failure


async def upload_async(
    ctx: AsyncRestContext,
    path: str,
    method: str,
    params: Param | None,
    reader: Any,
    mime_type: str,
    progress: AsyncUploadProgressFn | None = None,
) -> Envelope:
    """Async version of ``upload``."""
    size = await probe_size_async(reader)
    request_params = dict(params or {})
    if size is not None:
        request_params.setdefault("size", size)

    response = await ctx.do_request(path, method, request_params)
    uploader = AsyncUploader.prepare(response.apply(dict[str, Any]), ctx)
    uploader.set_progress(progress)
    return await uploader.do_upload(reader, mime_type, size)


__all__ = ["AsyncUploader", "upload_async", "probe_size_async"]
