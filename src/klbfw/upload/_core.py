"""Upload plan, size limits and the S3 helpers shared by both uploaders."""

from __future__ import annotations

import hashlib
import io
import threading
import xml.etree.ElementTree as ET
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from ..errors import UploadError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MiB = 1024 * 1024
S3_THRESHOLD = 64 * MiB  # unknown or larger sizes go to S3 when the plan allows it
MAX_PUT_SIZE = 5 * 1024 * MiB
MAX_S3_SIZE = 5 * 1024 * 1024 * MiB
S3_MAX_PARTS = 10000
S3_MIN_PART_SIZE = 5  # MiB
DEFAULT_MAX_PART_SIZE = 1024  # MiB
DEFAULT_PARALLEL_UPLOADS = 3
SPOOL_CHUNK_SIZE = 64 * 1024

EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
AMZ_ALGORITHM = "AWS4-HMAC-SHA256"

Strategy = Literal["put", "block", "s3"]


# ---------------------------------------------------------------------------
# Upload plan
# ---------------------------------------------------------------------------


class S3Target(BaseModel):
    model_config = ConfigDict(frozen=True)

    upload_id: str
    key: str
    region: str
    name: str
    host: str

    def sign_path(self) -> str:
        return f"/{self.name}/{self.key}"

    def url(self, query: str) -> str:
        return f"https://{self.host}/{self.name}/{self.key}?{query}"


class SignV4Reply(BaseModel):
    authorization: str


class UploadPlan(BaseModel):
    """How the backend wants the bytes delivered."""

    model_config = ConfigDict(frozen=True)

    put: str
    complete: str
    blocksize: int | None = None
    s3: S3Target | None = None

    @classmethod
    def from_data(cls, data: Mapping[str, Any]) -> UploadPlan:
        put = data.get("PUT")
        if not isinstance(put, str):
            raise UploadError("Missing PUT parameter")
        complete = data.get("Complete")
        if not isinstance(complete, str):
            raise UploadError("Missing Complete parameter")

        blocksize = _as_blocksize(data.get("Blocksize"))
        if blocksize is not None:
            if blocksize <= 0:
                raise UploadError(f"Invalid Blocksize {blocksize}")
            return cls(put=put, complete=complete, blocksize=blocksize)

        return cls(put=put, complete=complete, s3=_s3_target(data))

    @property
    def strategy(self) -> Strategy:
        if self.blocksize is not None:
            return "block"
        if self.s3 is not None:
            return "s3"
        return "put"

    def choose(self, size: int | None) -> Strategy:
        """Strategy for a payload of ``size`` bytes (None when unknown)."""
        strategy = self.strategy
        if strategy == "s3" and size is not None and size <= S3_THRESHOLD:
            return "put"
        return strategy


def _as_blocksize(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _s3_target(data: Mapping[str, Any]) -> S3Target | None:
    upload_id = data.get("Cloud_Aws_Bucket_Upload__")
    key = data.get("Key")
    bucket = data.get("Bucket_Endpoint")
    if not (isinstance(upload_id, str) and isinstance(key, str) and isinstance(bucket, Mapping)):
        return None
    region, name, host = (bucket.get(field) for field in ("Region", "Name", "Host"))
    if not (isinstance(region, str) and isinstance(name, str) and isinstance(host, str)):
        return None
    return S3Target(upload_id=upload_id, key=key, region=region, name=name, host=host)


# ---------------------------------------------------------------------------
# Sizes and ranges
# ---------------------------------------------------------------------------


def probe_size(reader: Any) -> int | None:
    """Bytes left in ``reader``, or None when it cannot seek.

    The stream is put back where it was.
    """
    try:
        position = reader.tell()
        reader.seek(0, io.SEEK_END)
        end = reader.tell()
        reader.seek(position, io.SEEK_SET)
    except (AttributeError, OSError, TypeError, ValueError):
        return None
    return remaining_bytes(position, end)


def remaining_bytes(position: Any, end: Any) -> int | None:
    """``end - position`` when both offsets are integers, else None."""
    for offset in (position, end):
        if not isinstance(offset, int) or isinstance(offset, bool):
            return None
    return max(0, end - position)


def s3_part_size(size: int | None, default: int = DEFAULT_MAX_PART_SIZE) -> int:
    """Part size in MiB so that ``size`` fits within the S3 part count limit."""
    if size is None:
        return default
    if size > MAX_S3_SIZE:
        raise UploadError("File exceeds AWS S3 5TB limit")
    return max(S3_MIN_PART_SIZE, size // (S3_MAX_PARTS * MiB))


def check_put_size(size: int | None) -> int:
    if size is None:
        raise UploadError("File size required for PUT upload")
    if size > MAX_PUT_SIZE:
        raise UploadError("File too large for PUT upload (>5GB)")
    return size


def content_range(start: int, length: int) -> str:
    return f"bytes {start}-{start + length - 1}/*"


# ---------------------------------------------------------------------------
# S3 request signing
# ---------------------------------------------------------------------------


def payload_sha256(payload: bytes) -> str:
    if not payload:
        return EMPTY_SHA256
    return hashlib.sha256(payload).hexdigest()


def amz_timestamp(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def sign_string(target: S3Target, method: str, query: str, timestamp: str) -> str:
    """The string the backend's ``signV4`` endpoint turns into an Authorization."""
    return "\n".join(
        [
            AMZ_ALGORITHM,
            timestamp,
            f"{timestamp[:8]}/{target.region}/s3/aws4_request",
            method,
            target.sign_path(),
            query,
            f"host:{target.host}",
        ]
    )


def sign_v4_path(target: S3Target) -> str:
    return f"Cloud/Aws/Bucket/Upload/{target.upload_id}:signV4"


# ---------------------------------------------------------------------------
# S3 XML documents
# ---------------------------------------------------------------------------


def parse_upload_id(document: str | bytes) -> str:
    """Read ``UploadId`` out of an InitiateMultipartUploadResult, any namespace."""
    try:
        root = ET.fromstring(document)
    except ET.ParseError as exc:
        raise UploadError(f"Failed to parse AWS response: {exc}") from exc
    for element in root.iter():
        if element.tag.rsplit("}", 1)[-1] == "UploadId" and element.text:
            return element.text
    raise UploadError("Failed to parse AWS response: missing UploadId")


def complete_document(etags: Iterable[str]) -> bytes:
    """CompleteMultipartUpload body listing parts 1..K in order."""
    root = ET.Element("CompleteMultipartUpload")
    for number, etag in enumerate(etags, start=1):
        part = ET.SubElement(root, "Part")
        ET.SubElement(part, "PartNumber").text = str(number)
        ET.SubElement(part, "ETag").text = etag
    return ET.tostring(root, encoding="utf-8", xml_declaration=False)


def store_etag(etags: list[str], part_number: int, etag: str) -> None:
    index = part_number - 1
    if len(etags) <= index:
        etags.extend([""] * (index + 1 - len(etags)))
    etags[index] = etag


# ---------------------------------------------------------------------------
# Wait group
# ---------------------------------------------------------------------------


class NumeralWaitGroup:
    """A counter that lets a thread wait until it drops to a given level.

    Only decrements wake waiters.
    """

    def __init__(self) -> None:
        self._count = 0
        self._cond = threading.Condition()

    @property
    def count(self) -> int:
        with self._cond:
            return self._count

    def add(self, delta: int) -> None:
        with self._cond:
            self._count += delta
            if delta < 0:
                self._cond.notify_all()

    def done(self) -> None:
        self.add(-1)

    def wait(self, minimum: int = 0) -> None:
        """Block while more than ``minimum`` operations are pending."""
        with self._cond:
            while self._count > minimum:
                self._cond.wait()


__all__ = [
    "MiB",
    "S3_THRESHOLD",
    "MAX_PUT_SIZE",
    "MAX_S3_SIZE",
    "DEFAULT_MAX_PART_SIZE",
    "DEFAULT_PARALLEL_UPLOADS",
    "EMPTY_SHA256",
    "S3Target",
    "SignV4Reply",
    "UploadPlan",
    "NumeralWaitGroup",
    "probe_size",
    "remaining_bytes",
    "s3_part_size",
    "check_put_size",
    "content_range",
    "payload_sha256",
    "amz_timestamp",
    "sign_string",
    "sign_v4_path",
    "parse_upload_id",
    "complete_document",
    "store_etag",
]
