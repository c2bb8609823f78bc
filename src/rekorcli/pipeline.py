"""Upload pipeline: load keys, fetch, hash, verify, build, submit.

Stages run strictly in order and every failure propagates as a ``RekorError``
subclass. Nothing is submitted unless the signature check passed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from rekorcli.config import UploadConfig
from rekorcli.entry import LogEntry, LogEntryBuilder
from rekorcli.fetcher import ArtifactFetcher
from rekorcli.hashing import ContentDigest, ContentHasher
from rekorcli.keys import KeyMaterialLoader, MaterialKind
from rekorcli.submitter import LogSubmitter, SubmissionResult
from rekorcli.verifier import SignatureVerifier, SignerIdentity


@dataclass
class PreparedUpload:
    """Everything produced before the network submission."""

    artifact_url: str
    digest: ContentDigest
    signer: SignerIdentity
    entry: LogEntry
    payload: bytes

    def to_dict(self) -> dict[str, Any]:
        return {
            "artifact_url": self.artifact_url,
            "sha256": str(self.digest),
            "decompressed": self.digest.decompressed,
            "signer": self.signer.to_dict(),
            "shape": self.entry.shape,
        }


@dataclass
class UploadResult:
    """Outcome of a completed upload."""

    prepared: PreparedUpload
    submission: SubmissionResult

    @property
    def status(self) -> str | None:
        return self.submission.status

    def to_dict(self) -> dict[str, Any]:
        result = self.prepared.to_dict()
        result["submission"] = self.submission.to_dict()
        return result


class UploadPipeline:
    """Runs the upload stages for one configuration.

    Stages may be injected; by default each is created with the pipeline's
    logger so a single logger is threaded through the whole run.
    """

    def __init__(
        self,
        config: UploadConfig,
        *,
        logger: logging.Logger | None = None,
        loader: KeyMaterialLoader | None = None,
        fetcher: ArtifactFetcher | None = None,
        hasher: ContentHasher | None = None,
        verifier: SignatureVerifier | None = None,
        builder: LogEntryBuilder | None = None,
        submitter: LogSubmitter | None = None,
    ) -> None:
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.loader = loader or KeyMaterialLoader(logger=self.logger)
        self.fetcher = fetcher or ArtifactFetcher(
            timeout=config.fetch_timeout,
            max_bytes=config.max_artifact_bytes,
            logger=self.logger,
        )
        self.hasher = hasher or ContentHasher(logger=self.logger)
        self.verifier = verifier or SignatureVerifier(logger=self.logger)
        self.builder = builder or LogEntryBuilder(logger=self.logger)
        self.submitter = submitter or LogSubmitter(logger=self.logger)

    def prepare(self) -> PreparedUpload:
        """Run every stage up to and including entry serialization.

        Raises:
            ConfigError: An input is missing
            ReadError, DecodeError: Key material cannot be loaded
            FetchError: Artifact download failed
            DecodeError: Compressed artifact is corrupt
            VerificationError: Signature does not validate
            EncodeError: Entry cannot be serialized
        """
        config = self.config
        config.require_inputs()

        # Key material is checked before anything is downloaded
        signature = self.loader.load(config.signature, MaterialKind.SIGNATURE)
        public_key = self.loader.load(config.public_key, MaterialKind.PUBLIC_KEY)
        keyring = self.loader.load_keyring(public_key)

        artifact = self.fetcher.fetch(config.artifact_url)
        digest = self.hasher.hash(config.artifact_url, artifact)

        signer = self.verifier.verify(keyring, artifact, signature)

        entry = self.builder.build(config.artifact_url, digest, signature, public_key)
        payload = self.builder.serialize(entry)

        return PreparedUpload(
            artifact_url=config.artifact_url,
            digest=digest,
            signer=signer,
            entry=entry,
            payload=payload,
        )

    def submit(self, prepared: PreparedUpload) -> UploadResult:
        """Submit a prepared entry to the configured log service."""
        submission = self.submitter.submit(
            self.config.rekor_server, prepared.payload, timeout=self.config.timeout
        )
        return UploadResult(prepared=prepared, submission=submission)

    def run(self) -> UploadResult:
        """Run all stages and submit the entry."""
        return self.submit(self.prepare())
