#!/usr/bin/env python3
"""
byte_decoder_test.py — Incremental byte decoder tests

Tests multi-byte characters split across chunks, final-chunk best-effort
decoding, and invalid byte handling.

Run: python3 adapters/byte_decoder_test.py
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
from byte_decoder import ByteDecoder

passed = 0
failed = 0


def test(name: str, fn):
    global passed, failed
    try:
        fn()
        print(f"  PASS  {name}")
        passed += 1
    except Exception as e:
        print(f"  FAIL  {name}")
        print(f"         {e}")
        failed += 1


def assert_eq(actual, expected, msg=""):
    if actual != expected:
        raise AssertionError(f"{msg}: expected {expected!r}, got {actual!r}")


def decode_all(chunks: list[bytes]) -> str:
    """Helper: feed chunks then finish the stream."""
    decoder = ByteDecoder()
    text = "".join(decoder.decode(chunk) for chunk in chunks)
    return text + decoder.decode(b"", final=True)


KOREAN = "안녕하세요".encode("utf-8")  # 3 bytes per character


# --- Basic Tests ---


def test_ascii_passthrough():
    decoder = ByteDecoder()
    assert_eq(decoder.decode(b"data: hi\n"), "data: hi\n", "ascii")
    assert_eq(decoder.pending, b"", "nothing pending")


def test_empty_chunk():
    decoder = ByteDecoder()
    assert_eq(decoder.decode(b""), "", "empty chunk")


# --- Split Characters ---


def test_two_byte_char_split():
    decoder = ByteDecoder()
    assert_eq(decoder.decode(b"caf\xc3"), "caf", "first half held back")
    assert_eq(decoder.pending, b"\xc3", "pending tail")
    assert_eq(decoder.decode(b"\xa9!"), "é!", "completed on next chunk")
    assert_eq(decoder.pending, b"", "tail consumed")


def test_three_byte_char_split_every_byte():
    chunks = [KOREAN[i:i + 1] for i in range(len(KOREAN))]
    assert_eq(decode_all(chunks), "안녕하세요", "byte-at-a-time")


def test_four_byte_char_split():
    emoji = "\U0001F600".encode("utf-8")
    decoder = ByteDecoder()
    assert_eq(decoder.decode(emoji[:1]), "", "1/4")
    assert_eq(decoder.decode(emoji[1:3]), "", "3/4")
    assert_eq(decoder.decode(emoji[3:]), "\U0001F600", "4/4")


def test_every_split_point_matches_single_chunk():
    payload = 'data: {"content":"반가워요 😀 café"}\n'.encode("utf-8")
    expected = payload.decode("utf-8")
    for cut in range(len(payload) + 1):
        assert_eq(decode_all([payload[:cut], payload[cut:]]), expected, f"cut at {cut}")


# --- Final Chunk ---


def test_final_with_incomplete_tail_is_permissive():
    decoder = ByteDecoder()
    assert_eq(decoder.decode(b"ok\xed\x95"), "ok", "tail held")
    assert_eq(decoder.decode(b"", final=True), "�", "best-effort replacement")
    assert_eq(decoder.pending, b"", "buffer cleared on stream end")


def test_final_without_tail():
    decoder = ByteDecoder()
    decoder.decode(b"abc")
    assert_eq(decoder.decode(b"", final=True), "", "nothing left")


def test_decoder_reusable_after_final():
    decoder = ByteDecoder()
    decoder.decode(b"\xc3", final=True)
    assert_eq(decoder.decode(b"\xc3\xa9"), "é", "fresh state after final")


def test_reset_discards_tail():
    decoder = ByteDecoder()
    decoder.decode(b"\xe2\x82")
    decoder.reset()
    assert_eq(decoder.pending, b"", "reset clears pending")
    assert_eq(decoder.decode(b"x"), "x", "decodes after reset")


# --- Invalid Bytes ---


def test_invalid_byte_replaced_without_dropping_neighbours():
    decoder = ByteDecoder()
    assert_eq(decoder.decode(b"a\xffb"), "a�b", "invalid byte mid-stream")


def test_other_encoding():
    decoder = ByteDecoder("utf-16-le")
    data = "hi".encode("utf-16-le")
    assert_eq(decoder.decode(data[:3]), "h", "half a code unit held")
    assert_eq(decoder.decode(data[3:]), "i", "completed")


# --- Main ---


def main():
    print("Byte Decoder Tests")
    print("==================")

    print()
    print("Basic:")
    test("ascii passthrough", test_ascii_passthrough)
    test("empty chunk", test_empty_chunk)

    print()
    print("Split characters:")
    test("two-byte char split", test_two_byte_char_split)
    test("three-byte chars byte-at-a-time", test_three_byte_char_split_every_byte)
    test("four-byte char split", test_four_byte_char_split)
    test("every split point", test_every_split_point_matches_single_chunk)

    print()
    print("Final chunk:")
    test("incomplete tail is permissive", test_final_with_incomplete_tail_is_permissive)
    test("final without tail", test_final_without_tail)
    test("reusable after final", test_decoder_reusable_after_final)
    test("reset discards tail", test_reset_discards_tail)

    print()
    print("Invalid bytes:")
    test("invalid byte replaced", test_invalid_byte_replaced_without_dropping_neighbours)
    test("other encoding", test_other_encoding)

    print()
    print(f"Results: {passed} passed, {failed} failed")

    if failed > 0:
        sys.exit(1)


if __name__ == "__main__":
    main()
