"""Tests for share ids, digests and API key generation."""
import hashlib
import re

from app.utils.security import (
    anonymous_bucket_key,
    api_key_display_prefix,
    digest,
    generate_api_key,
    generate_file_path,
    generate_share_id,
    verify_digest,
)


class TestShareId:
    def test_eight_lowercase_hex_chars(self):
        for _ in range(50):
            assert re.fullmatch(r"[0-9a-f]{8}", generate_share_id())

    def test_ids_differ(self):
        assert len({generate_share_id() for _ in range(200)}) > 190


class TestDigest:
    def test_is_sha256_hex(self):
        assert digest("secret") == hashlib.sha256(b"secret").hexdigest()
        assert len(digest("secret")) == 64

    def test_deterministic(self):
        assert digest("pw") == digest("pw")
        assert digest("pw") != digest("pw ")

    def test_verify_digest(self):
        stored = digest("hunter2")
        assert verify_digest("hunter2", stored)
        assert not verify_digest("hunter3", stored)

    def test_verify_digest_without_hash(self):
        assert not verify_digest("anything", None)
        assert not verify_digest("anything", "")


class TestApiKeyGeneration:
    def test_format(self):
        key = generate_api_key("op_")
        assert re.fullmatch(r"op_[A-Za-z0-9]{32}", key)

    def test_display_prefix_is_first_seven_chars(self):
        key = generate_api_key("op_")
        assert api_key_display_prefix(key) == key[:7]
        assert api_key_display_prefix(key).startswith("op_")


class TestPaths:
    def test_file_path_owner(self):
        assert generate_file_path("user-1").startswith("user-1/")
        assert generate_file_path(None).startswith("anonymous/")

    def test_file_paths_unique(self):
        assert generate_file_path("u") != generate_file_path("u")

    def test_anonymous_bucket_key(self):
        assert anonymous_bucket_key("10.0.0.1") == digest("ip:10.0.0.1")
        assert anonymous_bucket_key(None) == digest("ip:unknown")
