from __future__ import annotations

import hashlib
from pathlib import Path

from matchlink.utils.hashing import FNV64_OFFSET, handshake_tag, sha256_file


def test_handshake_tag_known_values():
    assert handshake_tag("") == FNV64_OFFSET
    # 0xaf63dc4c8601ec8c folded to signed
    assert handshake_tag("a") == -5808556873153909620


def test_handshake_tag_is_signed_64_bit_and_stable():
    names = ["MatchLink", "SpaceGame", "Ünïcode", "游戏"]
    tags = [handshake_tag(n) for n in names]

    assert all(-(2**63) <= t < 2**63 for t in tags)
    assert tags == [handshake_tag(n) for n in names]
    assert len(set(tags)) == len(names)


def test_handshake_tag_is_case_sensitive():
    assert handshake_tag("matchlink") != handshake_tag("MatchLink")


def test_sha256_file(tmp_path: Path):
    p = tmp_path / "f.bin"
    p.write_bytes(b"abc" * 1000)
    assert sha256_file(p) == hashlib.sha256(b"abc" * 1000).hexdigest()
