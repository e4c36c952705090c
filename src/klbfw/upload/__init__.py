"""Negotiated uploads: single PUT, block upload and S3 multipart."""

from ._core import (
    DEFAULT_MAX_PART_SIZE,
    DEFAULT_PARALLEL_UPLOADS,
    EMPTY_SHA256,
    MAX_PUT_SIZE,
    MAX_S3_SIZE,
    S3_THRESHOLD,
    MiB,
    NumeralWaitGroup,
    S3Target,
    UploadPlan,
)
from .aio import AsyncUploader, upload_async
from .uploader import Uploader, upload

__all__ = [
    "upload",
    "upload_async",
    "Uploader",
    "AsyncUploader",
    "UploadPlan",
    "S3Target",
    "NumeralWaitGroup",
    "MiB",
    "S3_THRESHOLD",
    "MAX_PUT_SIZE",
    "MAX_S3_SIZE",
    "DEFAULT_MAX_PART_SIZE",
    "DEFAULT_PARALLEL_UPLOADS",
    "EMPTY_SHA256",
]
