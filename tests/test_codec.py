import pytest

from streamrelay import codec
from streamrelay.exceptions import DecodeError
from streamrelay.storage import IdAllocator


@pytest.mark.parametrize("entry_id", ["mov001", "mov999", "ser0042", "a", "tv12"])
def test_decode_recovers_encoded_id(entry_id):
    assert codec.decode(codec.encode(entry_id)) == entry_id


def test_encode_strips_padding_and_adds_suffix():
    token = codec.encode("mov01")  # base64 would end in "="
    assert "=" not in token
    assert token.startswith("bW92MDE")
    assert len(token) == len("bW92MDE") + codec.SUFFIX_LENGTH


@pytest.mark.parametrize("token", ["", "a", "abc", "bW9"])
def test_decode_rejects_short_tokens(token):
    with pytest.raises(DecodeError):
        codec.decode(token)


def test_decode_rejects_non_base64():
    with pytest.raises(DecodeError):
        codec.decode("!!!!$$xyz")


def test_decode_rejects_impossible_length():
    # five base64 chars can never be a valid encoding
    with pytest.raises(DecodeError):
        codec.decode("bW92Mxyz"[:5] + "abc")


def test_decode_checks_issued_ids():
    alloc = IdAllocator()
    issued = alloc.allocate("mov")
    assert codec.decode(codec.encode(issued), issued=alloc.is_issued) == issued
    with pytest.raises(DecodeError):
        codec.decode(codec.encode("mov777"), issued=alloc.is_issued)
