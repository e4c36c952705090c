from .errors import (
    RestError,
    APIError,
    HTTPError,
    LoginRequiredError,
    NoClientIdError,
    NoRefreshTokenError,
    RequestBuildError,
    JSONError,
    Base64DecodeError,
    URLParseError,
    RestIOError,
    InvalidKeyError,
    UploadError,
)

from ._http import Config
from .types import Param, Time, UploadProgressFn, AsyncUploadProgressFn
from .envelope import Envelope
from .token import Token
from .apikey import ApiKey
from .context import RestContext, AsyncRestContext, do_request, apply
from .upload import (
    upload,
    upload_async,
    Uploader,
    AsyncUploader,
    UploadPlan,
    NumeralWaitGroup,
)

__all__ = [
    "RestError",
    "APIError",
    "HTTPError",
    "LoginRequiredError",
    "NoClientIdError",
    "NoRefreshTokenError",
    "RequestBuildError",
    "JSONError",
    "Base64DecodeError",
    "URLParseError",
    "RestIOError",
    "InvalidKeyError",
    "UploadError",
    "Config",
    "Param",
    "Time",
    "UploadProgressFn",
    "AsyncUploadProgressFn",
    "Envelope",
    "Token",
    "ApiKey",
    "RestContext",
    "AsyncRestContext",
    "do_request",
    "apply",
    "upload",
    "upload_async",
    "Uploader",
    "AsyncUploader",
    "UploadPlan",
    "NumeralWaitGroup",
]
