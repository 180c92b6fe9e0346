import pytest

from novel_analyzer.src.utils.text_utils import TextUtils  # type: ignore


@pytest.mark.parametrize(
    "byte_length,chunk_size,expected",
    [(0, 10, 0), (1, 10, 1), (10, 10, 1), (11, 10, 2), (95, 10, 10)],
)
def test_count_chunks(byte_length, chunk_size, expected):
    assert TextUtils.count_chunks(byte_length, chunk_size) == expected


def test_slices_cover_the_data_exactly():
    data = b"abcdefghijklmnopqrstuvw"
    total = TextUtils.count_chunks(len(data), 5)
    pieces = [TextUtils.slice_bytes(data, order, 5) for order in range(total)]
    assert pieces[-1] == b"uvw"
    assert b"".join(pieces) == data


def test_slice_past_end_is_empty():
    assert TextUtils.slice_bytes(b"abc", 3, 5) == b""


def test_truncate_text_marks_dropped_tail():
    assert TextUtils.truncate_text("abcdef", 4) == "abcd... [truncated 2 chars]"
    assert TextUtils.truncate_text("abc", 0) == "abc"
    assert TextUtils.truncate_text({"k": "v"}, 100) == '{"k": "v"}'


def test_preview_collapses_whitespace():
    assert TextUtils.preview("  one\n\ttwo   three ", 100) == "one two three"
