"""Tests for record identity hashing."""

import pytest

from shelfsync.core.identity import (
    ID_PREFIX,
    compute_record_id,
    hash_string,
    identity_source,
)


class TestHashString:
    """Tests for hash_string function."""

    def test_empty_string(self):
        assert hash_string("") == "id_0"

    def test_known_values(self):
        assert hash_string("a") == "id_61"
        assert hash_string("ab") == "id_c21"
        # 'a'*31*31 + 'b'*31 + 'c' = 96354
        assert hash_string("abc") == f"id_{96354:x}"

    def test_wraps_to_32_bits(self):
        value = hash_string("The quick brown fox jumps over the lazy dog" * 10)
        assert value.startswith(ID_PREFIX)
        assert int(value[len(ID_PREFIX):], 16) <= 0xFFFFFFFF

    def test_non_bmp_characters_hash_as_two_code_units(self):
        # U+1F4D6 is the surrogate pair D83D DCD6
        expected = ((0xD83D * 31) + 0xDCD6) & 0xFFFFFFFF
        assert hash_string("\U0001F4D6") == f"id_{expected:x}"

    def test_deterministic(self):
        assert hash_string("Dune|Frank Herbert") == hash_string("Dune|Frank Herbert")


class TestComputeRecordId:
    """Tests for compute_record_id function."""

    def test_identity_source_format(self):
        assert identity_source("Dune", "Frank Herbert", "dune.epub", 1024) == (
            "Dune|Frank Herbert|dune.epub|1024"
        )

    def test_missing_parts_render_empty(self):
        assert identity_source(None, None, "dune.epub", None) == "||dune.epub|"

    def test_identical_metadata_same_id(self):
        first = compute_record_id("Dune", "Frank Herbert", "dune.epub", 1024)
        second = compute_record_id("Dune", "Frank Herbert", "dune.epub", 1024)
        assert first == second

    def test_matches_hash_of_source(self):
        assert compute_record_id("Dune", "Frank Herbert", "dune.epub", 1024) == hash_string(
            "Dune|Frank Herbert|dune.epub|1024"
        )

    @pytest.mark.parametrize(
        "args",
        [
            ("Dune Messiah", "Frank Herbert", "dune.epub", 1024),
            ("Dune", "Brian Herbert", "dune.epub", 1024),
            ("Dune", "Frank Herbert", "dune.pdf", 1024),
            ("Dune", "Frank Herbert", "dune.epub", 2048),
        ],
    )
    def test_distinct_metadata_distinct_id(self, args):
        assert compute_record_id(*args) != compute_record_id("Dune", "Frank Herbert", "dune.epub", 1024)
