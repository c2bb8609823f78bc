"""Tests for detached signature verification."""

from __future__ import annotations

import pytest

from rekorcli.errors import VerificationError
from rekorcli.keys import EncodingClass, KeyMaterial, KeyMaterialLoader, MaterialKind
from rekorcli.verifier import SignatureVerifier


def _keyring(path):
    loader = KeyMaterialLoader()
    return loader.load_keyring(loader.load(path, MaterialKind.PUBLIC_KEY))


def _signature(path):
    return KeyMaterialLoader().load(path, MaterialKind.SIGNATURE)


def _flip_bit(data: bytes, index: int, bit: int = 0) -> bytes:
    mutated = bytearray(data)
    mutated[index] ^= 1 << bit
    return bytes(mutated)


class TestSignatureVerifier:
    """Test the SignatureVerifier class."""

    @pytest.mark.parametrize("sig_attr,key_attr", [
        ("sig_bin", "pub_bin"),
        ("sig_bin", "pub_asc"),
        ("sig_asc", "pub_bin"),
        ("sig_asc", "pub_asc"),
    ])
    def test_valid_signature(self, key_files, signing_key, artifact, sig_attr, key_attr):
        """Valid signatures pass for every encoding combination."""
        keyring = _keyring(getattr(key_files, key_attr))
        signature = _signature(getattr(key_files, sig_attr))

        identity = SignatureVerifier().verify(keyring, artifact, signature)

        assert identity.keyid == signing_key.fingerprint.keyid
        assert identity.fingerprint == str(signing_key.fingerprint)
        assert identity.user_ids == ("Release Signer <release@example.com>",)

    def test_identity_to_dict(self, key_files, artifact):
        """Signer identity serializes to a plain dict."""
        identity = SignatureVerifier().verify(
            _keyring(key_files.pub_bin), artifact, _signature(key_files.sig_bin)
        )
        data = identity.to_dict()

        assert data["keyid"] == identity.keyid
        assert data["user_ids"] == ["Release Signer <release@example.com>"]

    @pytest.mark.parametrize("index,bit", [(0, 0), (2, 7), (5, 3)])
    def test_mutated_artifact(self, key_files, artifact, index, bit):
        """Any single-bit change to the artifact fails verification."""
        keyring = _keyring(key_files.pub_bin)
        signature = _signature(key_files.sig_bin)

        with pytest.raises(VerificationError):
            SignatureVerifier().verify(keyring, _flip_bit(artifact, index, bit), signature)

    @pytest.mark.parametrize("offset", [-1, -10, -100])
    def test_mutated_signature(self, key_files, artifact, offset):
        """A bit flipped in the signature value fails verification."""
        keyring = _keyring(key_files.pub_bin)
        original = key_files.sig_bin.read_bytes()
        signature = KeyMaterial(
            MaterialKind.SIGNATURE,
            _flip_bit(original, len(original) + offset),
            EncodingClass.BINARY,
            "mutated.sig",
        )

        with pytest.raises(VerificationError):
            SignatureVerifier().verify(keyring, artifact, signature)

    def test_unknown_signer(self, tmp_path, key_files, other_key, artifact):
        """A signature by a key outside the ring fails verification."""
        foreign = tmp_path / "foreign.sig"
        foreign.write_bytes(bytes(other_key.sign(artifact)))

        with pytest.raises(VerificationError, match="not in the keyring"):
            SignatureVerifier().verify(_keyring(key_files.pub_bin), artifact, _signature(foreign))

    def test_garbage_signature(self, key_files, artifact):
        """Unparseable signature bytes fail verification."""
        signature = KeyMaterial(MaterialKind.SIGNATURE, b"\x00\x01\x02", EncodingClass.BINARY, "junk")

        with pytest.raises(VerificationError, match="Detached Signature"):
            SignatureVerifier().verify(_keyring(key_files.pub_bin), artifact, signature)

    def test_armored_key_is_not_a_signature(self, key_files, artifact):
        """An armored block with the wrong label fails verification."""
        signature = _signature(key_files.pub_asc)

        with pytest.raises(VerificationError, match="Armor Detached Signature"):
            SignatureVerifier().verify(_keyring(key_files.pub_bin), artifact, signature)

    def test_verification_error_is_not_transport_error(self, key_files, artifact):
        """Verification failures are distinguishable from I/O failures."""
        signature = KeyMaterial(MaterialKind.SIGNATURE, b"\x00\x01\x02", EncodingClass.BINARY, "junk")

        with pytest.raises(VerificationError) as exc_info:
            SignatureVerifier().verify(_keyring(key_files.pub_bin), artifact, signature)

        assert not isinstance(exc_info.value, OSError)
        assert exc_info.value.stage == "verify"
        assert exc_info.value.exit_code == 3
