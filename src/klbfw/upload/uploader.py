"""Blocking uploader: single PUT, block upload or S3 multipart on worker threads."""

from __future__ import annotations

import tempfile
import threading
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from typing import IO, Any

import httpx

from .._http import (
    BlockingTransport,
    BytesBody,
    RequestBody,
    create_upload_client,
    debug,
    iter_coroutine,
)
from ..context import RestContext
from ..envelope import Envelope
from ..errors import HTTPError, RestIOError, UploadError
from ..types import Param, UploadProgressFn
from ._core import (
    DEFAULT_MAX_PART_SIZE,
    DEFAULT_PARALLEL_UPLOADS,
    SPOOL_CHUNK_SIZE,
    MiB,
    NumeralWaitGroup,
    S3Target,
    SignV4Reply,
    UploadPlan,
    amz_timestamp,
    check_put_size,
    complete_document,
    content_range,
    parse_upload_id,
    payload_sha256,
    probe_size,
    s3_part_size,
    sign_string,
    sign_v4_path,
    store_etag,
)

SendPart = Callable[[int, int, IO[bytes]], None]


def _spool(reader: Any, spool: IO[bytes], limit: int) -> int:
    copied = 0
    try:
        while copied < limit:
            chunk = reader.read(min(SPOOL_CHUNK_SIZE, limit - copied))
            if not chunk:
                break
            spool.write(chunk)
            copied += len(chunk)
        spool.seek(0)
    except OSError as exc:
        raise RestIOError(str(exc)) from exc
    return copied


def _read_all(reader: Any) -> bytes:
    try:
        return bytes(reader.read())
    except OSError as exc:
        raise RestIOError(str(exc)) from exc


class Uploader:
    """Delivers a payload the way an ``UploadPlan`` asks for, then completes it.

    ``max_part_size`` (MiB) and ``parallel_uploads`` may be tuned between
    ``prepare`` and ``do_upload``.
    """

    def __init__(self, plan: UploadPlan, ctx: RestContext) -> None:
        self.plan = plan
        self.ctx = ctx
        self.max_part_size = DEFAULT_MAX_PART_SIZE
        self.parallel_uploads = DEFAULT_PARALLEL_UPLOADS
        self.progress: UploadProgressFn | None = None
        self._transport: BlockingTransport | None = None
        self._lock = threading.Lock()
        self._failure: Exception | None = None
        self._etags: list[str] = []
        self._upload_id: str | None = None

    @classmethod
    def prepare(cls, data: Mapping[str, Any], ctx: RestContext) -> Uploader:
        return cls(UploadPlan.from_data(data), ctx)

    def set_progress(self, progress: UploadProgressFn | None) -> None:
        self.progress = progress

    @property
    def etags(self) -> list[str]:
        with self._lock:
            return list(self._etags)

    def _report(self, delta: int) -> None:
        if self.progress is not None:
            self.progress(delta)

    def do_upload(self, reader: Any, mime_type: str, size: int | None = None) -> Envelope:
        """Send ``reader``'s bytes and return the envelope of the Complete call."""
        strategy = self.plan.choose(size)
        debug(self.ctx.config, f"upload strategy {strategy} (size: {size})")
        self._report(0)

        self._transport = BlockingTransport(create_upload_client(self.ctx.config))
        try:
            if strategy == "block":
                self._block_upload(reader, mime_type)
            elif strategy == "s3":
                self._s3_upload(reader, mime_type, size)
            else:
                self._put_upload(reader, mime_type, size)
        finally:
            self._transport.close()
            self._transport = None

        return self.ctx.do_request(self.plan.complete, "POST", {})

    def _send(
        self,
        method: str,
        url: str,
        body: RequestBody,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        assert self._transport is not None
        return iter_coroutine(self._transport.send(method, url, body=body, headers=headers))

    def _put_upload(self, reader: Any, mime_type: str, size: int | None) -> None:
        size = check_put_size(size)
        response = self._send("PUT", self.plan.put, BytesBody(_read_all(reader), mime_type))
        if not response.is_success:
            raise HTTPError(
                response.status_code, f"PUT upload failed with status {response.status_code}"
            )
        self._report(size)

    def _block_upload(self, reader: Any, mime_type: str) -> None:
        blocksize = self.plan.blocksize
        assert blocksize is not None

        def send_part(part_number: int, length: int, spool: IO[bytes]) -> None:
            start = (part_number - 1) * blocksize
            response = self._send(
                "PUT",
                self.plan.put,
                BytesBody(spool.read(), mime_type),
                {"Content-Range": content_range(start, length)},
            )
            if not response.is_success:
                raise HTTPError(
                    response.status_code,
                    f"Part upload failed with status {response.status_code}",
                )
            self._report(length)

        self._run_parts(reader, blocksize, send_part, send_empty_first=False)

    # -- S3 multipart ------------------------------------------------------

    def _s3_upload(self, reader: Any, mime_type: str, size: int | None) -> None:
        target = self.plan.s3
        assert target is not None
        with self._lock:
            self._etags = []
        part_bytes = s3_part_size(size, self.max_part_size) * MiB

        self._s3_init(target, mime_type)

        def send_part(part_number: int, length: int, spool: IO[bytes]) -> None:
            query = f"partNumber={part_number}&uploadId={self._upload_id}"
            response = self._s3_request(target, "PUT", query, spool.read())
            etag = response.headers.get("ETag")
            if etag is None:
                raise UploadError("Missing ETag in AWS response")
            with self._lock:
                store_etag(self._etags, part_number, etag)
            self._report(length)

        self._run_parts(reader, part_bytes, send_part, send_empty_first=True)
        self._s3_finalize(target)

    def _s3_init(self, target: S3Target, mime_type: str) -> None:
        response = self._s3_request(
            target,
            "POST",
            "uploads=",
            b"",
            {"Content-Type": mime_type, "X-Amz-Acl": "private"},
        )
        self._upload_id = parse_upload_id(response.content)
        debug(self.ctx.config, f"S3 multipart upload {self._upload_id} started")

    def _s3_finalize(self, target: S3Target) -> None:
        with self._lock:
            document = complete_document(self._etags)
        self._s3_request(
            target,
            "POST",
            f"uploadId={self._upload_id}",
            document,
            {"Content-Type": "text/xml"},
        )

    def _s3_request(
        self,
        target: S3Target,
        method: str,
        query: str,
        payload: bytes,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        timestamp = amz_timestamp()
        reply = self.ctx.apply(
            sign_v4_path(target),
            "POST",
            {"headers": sign_string(target, method, query, timestamp)},
            into=SignV4Reply,
        )

        request_headers = dict(headers or {})
        request_headers["X-Amz-Content-Sha256"] = payload_sha256(payload)
        request_headers["X-Amz-Date"] = timestamp
        request_headers["Authorization"] = reply.authorization

        response = self._send(method, target.url(query), BytesBody(payload), request_headers)
        if not response.is_success:
            raise HTTPError(response.status_code, response.text)
        return response

    # -- part pipeline -----------------------------------------------------

    def _run_parts(
        self,
        reader: Any,
        part_bytes: int,
        send_part: SendPart,
        *,
        send_empty_first: bool,
    ) -> None:
        """Spool ``reader`` into numbered parts and send them on worker threads.

        At most ``parallel_uploads`` parts are in flight. After the first
        failure no new part is spooled; running parts finish and the failure
        is raised.
        """
        wait_group = NumeralWaitGroup()
        self._failure = None

        def run(part_number: int, length: int, spool: IO[bytes]) -> None:
            try:
                send_part(part_number, length, spool)
            except Exception as exc:
                with self._lock:
                    if self._failure is None:
                        self._failure = exc
            finally:
                spool.close()
                wait_group.done()

        with ThreadPoolExecutor(max_workers=self.parallel_uploads) as executor:
            part_number = 0
            try:
                while True:
                    wait_group.wait(self.parallel_uploads - 1)
                    if self._failure is not None:
                        break
                    part_number += 1
                    spool = tempfile.TemporaryFile()
                    try:
                        length = _spool(reader, spool, part_bytes)
                    except BaseException:
                        spool.close()
                        raise
                    if length == 0 and not (send_empty_first and part_number == 1):
                        spool.close()
                        break
                    wait_group.add(1)
                    executor.submit(run, part_number, length, spool)
                    if length < part_bytes:
                        break
            finally:
                wait_group.wait(0)

        if self._failure is not None:
            raise self._failure


def upload(
    ctx: RestContext,
    path: str,
    method: str,
    params: Param | None,
    reader: Any,
    mime_type: str,
    progress: UploadProgressFn | None = None,
) -> Envelope:
    """Negotiate an upload through ``path`` and deliver ``reader``'s bytes.

    Args:
        ctx: Context used for the negotiation, S3 signing and completion calls.
        path: REST endpoint that hands out upload instructions.
        method: Verb for that endpoint, usually ``POST``.
        params: Parameters of the negotiation call. ``size`` is added when the
            reader can seek and the caller did not set it.
        reader: Binary file-like object.
        mime_type: Content type of the payload.
        progress: Called with ``0`` first, then with the byte count of every
            finished part. May run on worker threads.

    Returns:
        The envelope returned by the Complete call.
    """
    size = probe_size(reader)
    request_params = dict(params or {})
    if size is not None:
        request_params.setdefault("size", size)

    response = ctx.do_request(path, method, request_params)
    uploader = Uploader.prepare(response.apply(dict[str, Any]), ctx)
    uploader.set_progress(progress)
    return uploader.do_upload(reader, mime_type, size)


__all__ = ["Uploader", "upload"]
