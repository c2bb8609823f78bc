"""rekor-cli: verify a signed release artifact and record it in a Rekor log."""

from __future__ import annotations

from rekorcli._version import __version__

from rekorcli.config import UploadConfig
from rekorcli.errors import (
    ConfigError,
    DecodeError,
    EncodeError,
    FetchError,
    ReadError,
    RekorError,
    SubmissionError,
    SubmissionTimeoutError,
    VerificationError,
)
from rekorcli.pipeline import UploadPipeline, UploadResult

__all__ = [
    "__version__",
    "ConfigError",
    "DecodeError",
    "EncodeError",
    "FetchError",
    "ReadError",
    "RekorError",
    "SubmissionError",
    "SubmissionTimeoutError",
    "UploadConfig",
    "UploadPipeline",
    "UploadResult",
    "VerificationError",
]
