# tests/test_codec.py
import json

import pytest

from syncmarx.codec import PayloadCodec, derive_key
from syncmarx.exceptions import PayloadDecodeError

BOOKMARKS = {
    "title": "root",
    "children": [
        {"title": "Python", "url": "https://www.python.org/"},
        {"title": "Folder", "children": [{"title": "Ünïcode", "url": "https://example.com/?q=1"}]},
    ],
}


@pytest.fixture
def codec():
    return PayloadCodec("test-passphrase")


def test_encode_plain_is_pretty_printed_json(codec):
    """Uncompressed payloads are stored as indented JSON."""
    text = codec.encode({"a": 1}, compress=False)

    assert text == '{\n  "a": 1\n}'


def test_plain_round_trip(codec):
    result = codec.decode(codec.encode(BOOKMARKS, compress=False))

    assert result.contents == BOOKMARKS
    assert result.compressed is False


def test_compressed_round_trip(codec):
    result = codec.decode(codec.encode(BOOKMARKS, compress=True))

    assert result.contents == BOOKMARKS
    assert result.compressed is True


def test_compressed_payload_is_opaque(codec):
    """The encrypted form must not leak the plain JSON."""
    text = codec.encode(BOOKMARKS, compress=True)

    assert "Python" not in text
    with pytest.raises(json.JSONDecodeError):
        json.loads(text)


def test_payload_from_another_installation_with_same_passphrase(codec):
    text = PayloadCodec("test-passphrase").encode([1, 2, 3], compress=True)

    assert codec.decode(text).contents == [1, 2, 3]


def test_wrong_passphrase_raises_decode_error(codec):
    text = PayloadCodec("another-passphrase").encode([1, 2, 3], compress=True)

    with pytest.raises(PayloadDecodeError):
        codec.decode(text)


def test_corrupted_plain_payload_raises_decode_error(codec):
    """
    A plain payload that no longer parses is routed to the decrypt path,
    which fails with a decode error rather than a JSON parse error.
    """
    text = codec.encode({"a": 1}, compress=False)
    corrupted = text.replace("}", "]")

    with pytest.raises(PayloadDecodeError) as exc_info:
        codec.decode(corrupted)

    assert not isinstance(exc_info.value, json.JSONDecodeError)


def test_decode_bytes(codec):
    assert codec.decode_bytes(b'{"a": 1}').contents == {"a": 1}

    with pytest.raises(PayloadDecodeError):
        codec.decode_bytes(b"\xff\xfe garbage")


def test_derive_key_is_a_valid_fernet_key():
    key = derive_key("anything")

    assert len(key) == 44
    assert derive_key("anything") == key
