"""Loading and classification of OpenPGP signature and public-key material.

Each source is read once and tagged as ASCII-armored or binary. The tag travels
with the bytes in a ``KeyMaterial`` so later stages branch on it instead of
probing the data again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Iterable

from pgpy import PGPKey, PGPSignature
from pgpy.errors import PGPError
from pgpy.types import Armorable

from rekorcli.errors import DecodeError, ReadError

DEFAULT_MAX_MATERIAL_BYTES = 1024 * 1024  # 1 MiB

KEY_ARMOR_LABELS = ("PUBLIC KEY BLOCK", "PRIVATE KEY BLOCK")
SIGNATURE_ARMOR_LABEL = "SIGNATURE"

# PGPy reports damaged or truncated OpenPGP data through any of these
PARSE_ERRORS = (
    PGPError,
    ValueError,
    TypeError,
    IndexError,
    KeyError,
    AttributeError,
    NotImplementedError,
)


class EncodingClass(Enum):
    """How a piece of key material was encoded on disk."""

    ARMORED = "armored"
    BINARY = "binary"


class MaterialKind(Enum):
    """Role of a piece of key material."""

    SIGNATURE = "signature"
    PUBLIC_KEY = "public key"


@dataclass(frozen=True)
class KeyMaterial:
    """Raw bytes of a signature or public key, tagged with their encoding."""

    kind: MaterialKind
    data: bytes
    encoding: EncodingClass
    source: str = ""

    @property
    def is_armored(self) -> bool:
        return self.encoding is EncodingClass.ARMORED


def classify(data: bytes) -> EncodingClass:
    """Classify ``data`` by attempting an ASCII-armor decode."""
    if not Armorable.is_ascii(data):
        return EncodingClass.BINARY
    try:
        Armorable.ascii_unarmor(data)
    except PARSE_ERRORS:
        return EncodingClass.BINARY
    return EncodingClass.ARMORED


def unarmor(material: KeyMaterial, expected: Iterable[str]) -> bytes:
    """Strip ASCII armor from ``material`` and return the binary packets.

    Raises:
        ValueError: Armor is malformed or carries an unexpected label
    """
    try:
        block = Armorable.ascii_unarmor(material.data)
    except PGPError as e:
        raise ValueError(str(e)) from e

    label = block["magic"]
    if label not in tuple(expected):
        raise ValueError(f"unexpected armor label: {label}")
    return bytes(block["body"])


def armor(material: KeyMaterial) -> str:
    """Return ``material`` as ASCII-armored text.

    Binary material is parsed and re-armored.

    Raises:
        DecodeError: Material cannot be parsed or is not ASCII text
    """
    if material.is_armored:
        try:
            return material.data.decode("ascii")
        except UnicodeDecodeError as e:
            raise DecodeError(f"Armored {material.kind.value} is not ASCII text") from e

    try:
        if material.kind is MaterialKind.SIGNATURE:
            return str(PGPSignature.from_blob(material.data))
        key, _ = PGPKey.from_blob(material.data)
        return str(key)
    except PARSE_ERRORS as e:
        raise DecodeError(
            f"Cannot armor binary {material.kind.value} from {material.source}: {e}"
        ) from e


class KeyRing:
    """Public keys indexed by key id, subkeys included."""

    def __init__(self, keys: Iterable[PGPKey] = ()) -> None:
        self._keys: list[PGPKey] = []
        self._by_keyid: dict[str, PGPKey] = {}
        for key in keys:
            self.add(key)

    def add(self, key: PGPKey) -> None:
        """Add a primary key and its subkeys. Subkeys passed alone are ignored."""
        if not key.is_primary:
            return
        keyid = key.fingerprint.keyid
        if keyid in self._by_keyid:
            return
        self._keys.append(key)
        self._by_keyid[keyid] = key
        for subkey in key.subkeys.values():
            self._by_keyid.setdefault(subkey.fingerprint.keyid, subkey)

    def lookup(self, keyid: str) -> PGPKey | None:
        """Return the key or subkey with ``keyid`` (16 hex digits)."""
        return self._by_keyid.get(keyid.upper())

    @property
    def fingerprints(self) -> list[str]:
        return [str(key.fingerprint) for key in self._keys]

    def __len__(self) -> int:
        return len(self._keys)

    def __iter__(self):
        return iter(self._keys)

    def __contains__(self, keyid: object) -> bool:
        return isinstance(keyid, str) and keyid.upper() in self._by_keyid


class KeyMaterialLoader:
    """Reads signature and public-key sources and builds key rings."""

    def __init__(
        self,
        max_bytes: int = DEFAULT_MAX_MATERIAL_BYTES,
        logger: logging.Logger | None = None,
    ) -> None:
        self.max_bytes = max_bytes
        self.logger = logger or logging.getLogger(__name__)

    def load(self, source: str | Path | BinaryIO, kind: MaterialKind) -> KeyMaterial:
        """Read ``source`` and classify its encoding.

        Args:
            source: Filesystem path or readable binary stream. A stream is
                returned to its original position after reading.
            kind: Whether the source holds a signature or a public key

        Returns:
            KeyMaterial with the full contents and their EncodingClass

        Raises:
            ReadError: Source cannot be opened or read, is empty, or is too large
        """
        if hasattr(source, "read"):
            name = str(getattr(source, "name", "<stream>"))
            data = self._read_stream(source, name, kind)
        else:
            name = str(source)
            data = self._read_path(Path(source), kind)

        if not data:
            raise ReadError(f"{kind.value.capitalize()} source is empty: {name}")

        encoding = classify(data)
        self.logger.debug("Loaded %s from %s (%s, %d bytes)",
                          kind.value, name, encoding.value, len(data))
        return KeyMaterial(kind=kind, data=data, encoding=encoding, source=name)

    def _read_path(self, path: Path, kind: MaterialKind) -> bytes:
        try:
            stream = open(path, "rb")
        except OSError as e:
            raise ReadError(f"Error opening {kind.value} {path}: {e}") from e
        with stream:
            return self._read_stream(stream, str(path), kind)

    def _read_stream(self, stream: BinaryIO, name: str, kind: MaterialKind) -> bytes:
        try:
            position = stream.tell()
            data = stream.read(self.max_bytes + 1)
            stream.seek(position)
        except OSError as e:
            raise ReadError(f"Error reading {kind.value} {name}: {e}") from e

        if len(data) > self.max_bytes:
            raise ReadError(
                f"{kind.value.capitalize()} {name} exceeds size limit ({self.max_bytes} bytes)"
            )
        return data

    def load_keyring(self, material: KeyMaterial) -> KeyRing:
        """Parse public-key material into a KeyRing.

        Armored material is unarmored first; binary material is parsed as is.

        Raises:
            DecodeError: Material is not a key block, holds no keys, or holds
                secret key material
        """
        try:
            if material.is_armored:
                packets = unarmor(material, KEY_ARMOR_LABELS)
            else:
                packets = material.data
            key, others = PGPKey.from_blob(packets)
        except PARSE_ERRORS as e:
            raise DecodeError(
                f"Error reading {material.encoding.value} keyring from {material.source}: {e}",
                stage="load",
            ) from e

        primaries = [k for k in (key, *others.values()) if k.is_primary]
        if not primaries:
            raise DecodeError(f"No public keys found in {material.source}", stage="load")
        if any(not k.is_public for k in primaries):
            raise DecodeError(
                f"Refusing secret key material in {material.source}; supply the public key",
                stage="load",
            )

        keyring = KeyRing(primaries)

        self.logger.debug("Keyring holds %d key(s): %s",
                          len(keyring), ", ".join(keyring.fingerprints))
        return keyring
