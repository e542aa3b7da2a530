import hashlib

import pytest
from solders.pubkey import Pubkey

from lending_aggregator.codec.layout import (
    AccountReader,
    AccountWriter,
    anchor_discriminator,
    decode_name,
    encode_name,
    parse_pubkey,
)
from lending_aggregator.errors import DeserializationError, InvalidAddress


def test_anchor_discriminator_matches_sha256_prefix():
    expected = hashlib.sha256(b"account:Reserve").digest()[:8]
    assert anchor_discriminator("Reserve") == expected
    assert len(anchor_discriminator("Obligation")) == 8


def test_writer_and_reader_agree_on_little_endian_layout():
    key = Pubkey.new_unique()
    writer = AccountWriter(120, discriminator=b"\x01" * 8)
    writer.u8(8, 7)
    writer.u16(9, 0xBEEF)
    writer.i64(11, -42)
    writer.u128(19, 1 << 100)
    writer.flag(35, True)
    writer.pubkey(36, key)
    writer.name_field(68, "USDC")
    data = writer.to_bytes()

    reader = AccountReader(data, name="test", min_size=120, discriminator=b"\x01" * 8)
    assert reader.u8(8) == 7
    assert reader.u16(9) == 0xBEEF
    assert reader.i64(11) == -42
    assert reader.u128(19) == 1 << 100
    assert reader.flag(35) is True
    assert reader.pubkey(36) == key
    assert reader.name_field(68) == "USDC"


def test_reader_rejects_short_buffer():
    with pytest.raises(DeserializationError, match="expected at least 10 bytes"):
        AccountReader(b"\x00" * 9, name="short", min_size=10)


def test_reader_rejects_wrong_discriminator():
    with pytest.raises(DeserializationError, match="discriminator"):
        AccountReader(b"\x00" * 16, name="acct", min_size=16, discriminator=b"\x01" * 8)


def test_reads_past_end_raise():
    reader = AccountReader(b"\x00" * 8, name="acct", min_size=8)
    with pytest.raises(DeserializationError):
        reader.u64(4)


def test_invalid_bool_byte_raises():
    reader = AccountReader(b"\x02", name="acct", min_size=1)
    with pytest.raises(DeserializationError, match="invalid bool"):
        reader.flag(0)


def test_name_helpers_strip_padding():
    assert decode_name(encode_name("SOL", 8)) == "SOL"
    with pytest.raises(ValueError):
        encode_name("x" * 33)


def test_parse_pubkey():
    key = Pubkey.new_unique()
    assert parse_pubkey(str(key)) == key
    assert parse_pubkey(key) is key


def test_parse_pubkey_rejects_garbage():
    with pytest.raises(InvalidAddress, match="wallet"):
        parse_pubkey("not-a-key", "wallet")
