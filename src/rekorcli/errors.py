"""Error taxonomy for the upload pipeline.

Every failure in the pipeline is fatal. Each error class carries the stage it
belongs to and the process exit code the CLI uses for it, so a failed trust
check can never be confused with a network problem.
"""

from __future__ import annotations


class RekorError(Exception):
    """Base class for all pipeline failures."""

    stage = "upload"
    exit_code = 1

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        if stage is not None:
            self.stage = stage


class ConfigError(RekorError, ValueError):
    """Configuration is missing or malformed."""

    stage = "config"
    exit_code = 2


class ReadError(RekorError, OSError):
    """A signature or public key source could not be read."""

    stage = "load"


class FetchError(RekorError):
    """The artifact download failed or returned a non-success status."""

    stage = "fetch"


class DecodeError(RekorError, ValueError):
    """Key material, compressed content or a response body could not be decoded."""

    stage = "decode"


class VerificationError(RekorError):
    """The detached signature does not validate against the key ring."""

    stage = "verify"
    exit_code = 3


class EncodeError(RekorError, ValueError):
    """The log entry could not be serialized."""

    stage = "build"


class SubmissionError(RekorError):
    """The log service rejected the entry or could not be reached."""

    stage = "submit"


class SubmissionTimeoutError(SubmissionError, TimeoutError):
    """The log service did not answer within the time budget."""

    exit_code = 4
