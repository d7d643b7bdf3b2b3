"""Tests for the SSE frame decoder."""

from open_chat.stream.frames import Frame, FrameDecoder


def _decode(chunks: list[bytes]) -> list[str]:
    decoder = FrameDecoder()
    frames = []
    for chunk in chunks:
        frames.extend(decoder.feed(chunk))
    frames.extend(decoder.flush())
    return [f.payload for f in frames]


BODY = (
    b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n\n'
    b'data: {"choices":[{"delta":{"content":"lo"}}]}\n\n'
    b"data: [DONE]\n\n"
)


class TestFrameDecoder:
    def test_single_chunk(self):
        assert _decode([BODY]) == [
            '{"choices":[{"delta":{"content":"Hel"}}]}',
            '{"choices":[{"delta":{"content":"lo"}}]}',
            "[DONE]",
        ]

    def test_any_two_way_split_is_equivalent(self):
        expected = _decode([BODY])
        for i in range(len(BODY) + 1):
            assert _decode([BODY[:i], BODY[i:]]) == expected, f"split at {i}"

    def test_one_byte_at_a_time(self):
        chunks = [BODY[i:i + 1] for i in range(len(BODY))]
        assert _decode(chunks) == _decode([BODY])

    def test_partial_line_is_buffered(self):
        decoder = FrameDecoder()
        assert decoder.feed(b'data: {"a":') == []
        assert decoder.pending == 'data: {"a":'
        frames = decoder.feed(b" 1}\n")
        assert [f.payload for f in frames] == ['{"a": 1}']
        assert decoder.pending == ""

    def test_multibyte_utf8_split(self):
        body = 'data: {"content":"héllo ✓"}\n\n'.encode()
        chunks = [body[i:i + 1] for i in range(len(body))]
        assert _decode(chunks) == ['{"content":"héllo ✓"}']

    def test_non_data_lines_discarded(self):
        body = b"event: message\nid: 7\nretry: 100\n: keep-alive\n\ndata: {}\n\n"
        assert _decode([body]) == ["{}"]

    def test_crlf_line_endings(self):
        body = b"data: one\r\n\r\ndata: two\r\n\r\n"
        assert _decode([body[:10], body[10:]]) == ["one", "two"]

    def test_prefix_without_space(self):
        assert _decode([b"data:{}\n"]) == ["{}"]

    def test_flush_emits_unterminated_line(self):
        decoder = FrameDecoder()
        assert decoder.feed(b"data: [DONE]") == []
        frames = decoder.flush()
        assert len(frames) == 1
        assert frames[0].is_done

    def test_empty_data_line_skipped(self):
        assert _decode([b"data: \n\ndata:\n\n"]) == []


class TestFrame:
    def test_done_sentinel(self):
        assert Frame("[DONE]").is_done
        assert Frame(" [DONE] ").is_done

    def test_json_payload_is_not_done(self):
        assert not Frame('{"done": true}').is_done
