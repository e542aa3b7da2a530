"""Length-checked, offset-addressed readers and writers for raw account data."""

from __future__ import annotations

import hashlib

from solders.pubkey import Pubkey

from ..errors import DeserializationError, InvalidAddress

PUBKEY_BYTES = 32
DISCRIMINATOR_BYTES = 8


def anchor_discriminator(account_name: str) -> bytes:
    """Anchor discriminator: first 8 bytes of sha256(b"account:" + name)."""
    return hashlib.sha256(f"account:{account_name}".encode("utf-8")).digest()[
        :DISCRIMINATOR_BYTES
    ]


def decode_name(raw: bytes) -> str:
    """Decode a fixed-width, NUL-padded UTF-8 name field."""
    return raw.decode("utf-8", errors="replace").replace("\x00", "").strip()


def encode_name(name: str, width: int = 32) -> bytes:
    encoded = name.encode("utf-8")
    if len(encoded) > width:
        raise ValueError(f"name {name!r} longer than {width} bytes")
    return encoded.ljust(width, b"\x00")


class AccountReader:
    """Typed little-endian reads at absolute offsets of one account buffer.

    The constructor rejects buffers shorter than ``min_size`` and, when given, a
    mismatching ``discriminator`` prefix. Every read is bounds-checked again so a
    wrong offset table surfaces as ``DeserializationError`` instead of garbage.
    """

    def __init__(
        self,
        data: bytes,
        *,
        name: str,
        min_size: int,
        discriminator: bytes | None = None,
    ) -> None:
        self.data = bytes(data)
        self.name = name
        if len(self.data) < min_size:
            raise DeserializationError(
                f"{name}: expected at least {min_size} bytes, got {len(self.data)}"
            )
        if discriminator is not None and not self.data.startswith(discriminator):
            raise DeserializationError(f"{name}: discriminator mismatch")

    def raw(self, offset: int, length: int) -> bytes:
        end = offset + length
        if offset < 0 or end > len(self.data):
            raise DeserializationError(
                f"{self.name}: read [{offset}:{end}] outside {len(self.data)} bytes"
            )
        return self.data[offset:end]

    def _int(self, offset: int, length: int, signed: bool = False) -> int:
        return int.from_bytes(self.raw(offset, length), "little", signed=signed)

    def u8(self, offset: int) -> int:
        return self._int(offset, 1)

    def u16(self, offset: int) -> int:
        return self._int(offset, 2)

    def i16(self, offset: int) -> int:
        return self._int(offset, 2, signed=True)

    def u32(self, offset: int) -> int:
        return self._int(offset, 4)

    def u64(self, offset: int) -> int:
        return self._int(offset, 8)

    def i64(self, offset: int) -> int:
        return self._int(offset, 8, signed=True)

    def u128(self, offset: int) -> int:
        return self._int(offset, 16)

    def i128(self, offset: int) -> int:
        return self._int(offset, 16, signed=True)

    def flag(self, offset: int) -> bool:
        value = self.u8(offset)
        if value not in (0, 1):
            raise DeserializationError(
                f"{self.name}: invalid bool {value} at offset {offset}"
            )
        return value == 1

    def pubkey(self, offset: int) -> Pubkey:
        return Pubkey.from_bytes(self.raw(offset, PUBKEY_BYTES))

    def name_field(self, offset: int, width: int = 32) -> str:
        return decode_name(self.raw(offset, width))


class AccountWriter:
    """Mirror of ``AccountReader`` that lays values into a zeroed buffer."""

    def __init__(self, size: int, discriminator: bytes | None = None) -> None:
        self.buffer = bytearray(size)
        if discriminator is not None:
            self.raw(0, discriminator)

    def raw(self, offset: int, value: bytes) -> None:
        end = offset + len(value)
        if end > len(self.buffer):
            raise ValueError(f"write [{offset}:{end}] outside {len(self.buffer)} bytes")
        self.buffer[offset:end] = value

    def _int(self, offset: int, length: int, value: int, signed: bool = False) -> None:
        self.raw(offset, value.to_bytes(length, "little", signed=signed))

    def u8(self, offset: int, value: int) -> None:
        self._int(offset, 1, value)

    def u16(self, offset: int, value: int) -> None:
        self._int(offset, 2, value)

    def i16(self, offset: int, value: int) -> None:
        self._int(offset, 2, value, signed=True)

    def u32(self, offset: int, value: int) -> None:
        self._int(offset, 4, value)

    def u64(self, offset: int, value: int) -> None:
        self._int(offset, 8, value)

    def i64(self, offset: int, value: int) -> None:
        self._int(offset, 8, value, signed=True)

    def u128(self, offset: int, value: int) -> None:
        self._int(offset, 16, value)

    def i128(self, offset: int, value: int) -> None:
        self._int(offset, 16, value, signed=True)

    def flag(self, offset: int, value: bool) -> None:
        self.u8(offset, 1 if value else 0)

    def pubkey(self, offset: int, value: Pubkey) -> None:
        self.raw(offset, bytes(value))

    def name_field(self, offset: int, value: str, width: int = 32) -> None:
        self.raw(offset, encode_name(value, width))

    def to_bytes(self) -> bytes:
        return bytes(self.buffer)


def parse_pubkey(address: str | Pubkey, what: str = "address") -> Pubkey:
    """Parse a base58 address, raising ``InvalidAddress`` on malformed input."""
    if isinstance(address, Pubkey):
        return address
    try:
        return Pubkey.from_string(address)
    except ValueError as exc:
        raise InvalidAddress(f"Invalid {what} {address!r}: {exc}") from exc
