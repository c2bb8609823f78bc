"""Detached OpenPGP signature verification.

This is the trust boundary of the upload pipeline: no entry is built or
submitted unless ``SignatureVerifier.verify`` returns.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from pgpy import PGPSignature

from rekorcli.errors import VerificationError
from rekorcli.keys import PARSE_ERRORS, SIGNATURE_ARMOR_LABEL, KeyMaterial, KeyRing, unarmor


@dataclass(frozen=True)
class SignerIdentity:
    """Key that produced a valid signature."""

    keyid: str
    fingerprint: str
    user_ids: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "keyid": self.keyid,
            "fingerprint": self.fingerprint,
            "user_ids": list(self.user_ids),
        }


class SignatureVerifier:
    """Checks a detached signature over artifact bytes against a key ring."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    def verify(self, keyring: KeyRing, artifact: bytes, signature: KeyMaterial) -> SignerIdentity:
        """Verify ``signature`` over ``artifact``.

        The armored or binary path is chosen from the signature's own
        encoding tag; the key ring is already parsed and is searched in full.

        Args:
            keyring: Trusted public keys
            artifact: Exact bytes that were downloaded
            signature: Detached signature material

        Returns:
            SignerIdentity of the key that made the signature

        Raises:
            VerificationError: Signature is unreadable, made by a key outside
                the key ring, or does not match the artifact
        """
        sig, signer = self._parse(signature)

        key = keyring.lookup(signer)
        if key is None:
            raise VerificationError(
                f"Signature Verification failed: signer {signer} is not in the keyring "
                f"({', '.join(keyring.fingerprints) or 'empty'})"
            )

        try:
            result = key.verify(artifact, sig)
        except PARSE_ERRORS as e:
            raise VerificationError(f"Signature Verification failed: {e}") from e

        if not result:
            raise VerificationError(
                f"Signature Verification failed: signature by {signer} does not match the artifact"
            )

        owner = key if key.is_primary else key.parent
        identity = SignerIdentity(
            keyid=signer,
            fingerprint=str(key.fingerprint),
            user_ids=tuple(_format_uid(uid) for uid in owner.userids),
        )
        self.logger.info("Signature validation passed (key %s)", identity.fingerprint)
        return identity

    def _parse(self, signature: KeyMaterial) -> tuple[PGPSignature, str]:
        if signature.is_armored:
            label = "Armor Detached Signature"
        else:
            label = "Detached Signature"

        try:
            if signature.is_armored:
                packets = unarmor(signature, (SIGNATURE_ARMOR_LABEL,))
            else:
                packets = signature.data
            sig = PGPSignature.from_blob(packets)
            signer = sig.signer
        except PARSE_ERRORS as e:
            raise VerificationError(f"Error reading {label} from {signature.source}: {e}") from e

        if not signer:
            raise VerificationError(f"{label} from {signature.source} names no issuer key")
        return sig, signer


def _format_uid(uid) -> str:
    if uid.email:
        return f"{uid.name} <{uid.email}>"
    return uid.name
