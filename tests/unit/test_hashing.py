"""Tests for content hashing — digests and canonical JSON."""

import hashlib

from pydantic import BaseModel

from artifactos.integrity.hashing import (
    canonical_json,
    is_sha256_hex,
    sha256_chunks,
    sha256_hash,
)


class SampleModel(BaseModel):
    name: str
    value: int
    nested: dict[str, int] = {}


class TestCanonicalJson:
    def test_sorted_keys(self) -> None:
        result = canonical_json({"z": 1, "a": 2, "m": 3})
        assert result == '{"a":2,"m":3,"z":1}'

    def test_no_whitespace(self) -> None:
        result = canonical_json({"key": "value"})
        assert " " not in result

    def test_nested_sorted(self) -> None:
        result = canonical_json({"b": {"z": 1, "a": 2}, "a": 1})
        assert result == '{"a":1,"b":{"a":2,"z":1}}'

    def test_pydantic_model(self) -> None:
        model = SampleModel(name="test", value=42, nested={"b": 2, "a": 1})
        result = canonical_json(model)
        assert result.index('"a"') < result.index('"b"')

    def test_list_order_preserved(self) -> None:
        assert canonical_json([3, 1, 2]) == "[3,1,2]"

    def test_key_order_does_not_matter(self) -> None:
        assert canonical_json({"a": 1, "b": [1, 2]}) == canonical_json({"b": [1, 2], "a": 1})

    def test_empty_context(self) -> None:
        assert canonical_json({}) == "{}"


class TestSha256:
    def test_bytes_and_str_agree(self) -> None:
        assert sha256_hash("hello") == sha256_hash(b"hello")

    def test_matches_hashlib(self) -> None:
        assert sha256_hash(b"hello") == hashlib.sha256(b"hello").hexdigest()

    def test_chunks_match_whole_payload(self) -> None:
        assert sha256_chunks([b"hel", b"lo"]) == sha256_hash(b"hello")
        assert sha256_chunks([]) == sha256_hash(b"")

    def test_is_sha256_hex(self) -> None:
        assert is_sha256_hex(sha256_hash(b"x"))
        assert not is_sha256_hex("abc")
        assert not is_sha256_hex(sha256_hash(b"x").upper())
