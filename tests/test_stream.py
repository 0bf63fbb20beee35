"""Tests for the stream buffer — decoding, ANSI stripping, redraw detection."""

from sentinel.triggers.stream import StreamBuffer, looks_like_redraw, strip_ansi


class TestStripAnsi:
    def test_color_codes(self):
        assert strip_ansi("\x1b[31mred\x1b[0m text") == "red text"

    def test_osc_title(self):
        assert strip_ansi("\x1b]0;my title\x07hello") == "hello"
        assert strip_ansi("\x1b]2;t\x1b\\hello") == "hello"

    def test_carriage_return_and_controls(self):
        assert strip_ansi("a\r\nb\x07c\x08") == "a\nbc"

    def test_tabs_and_newlines_kept(self):
        assert strip_ansi("a\tb\nc") == "a\tb\nc"

    def test_charset_designation(self):
        assert strip_ansi("\x1b(Bplain") == "plain"


class TestLooksLikeRedraw:
    def test_cursor_up(self):
        assert looks_like_redraw("\x1b[2A")
        assert looks_like_redraw("\x1b[A")

    def test_cursor_position(self):
        assert looks_like_redraw("\x1b[H")
        assert looks_like_redraw("\x1b[10;1H")
        assert looks_like_redraw("\x1b[5;2f")

    def test_erase_display(self):
        assert looks_like_redraw("\x1b[2J")
        assert looks_like_redraw("\x1b[J")

    def test_colors_are_not_redraw(self):
        assert not looks_like_redraw("\x1b[31mred\x1b[0m")

    def test_plain_text_is_not_redraw(self):
        assert not looks_like_redraw("hello\n")


class TestStreamBuffer:
    def test_appends_chunks(self):
        buf = StreamBuffer()
        buf.ingest("s1", b"hello ")
        assert buf.ingest("s1", b"world") == "hello world"

    def test_sessions_are_independent(self):
        buf = StreamBuffer()
        buf.ingest("s1", b"one")
        buf.ingest("s2", b"two")
        assert buf.get("s1") == "one"
        assert buf.get("s2") == "two"

    def test_redraw_replaces_buffer(self):
        buf = StreamBuffer()
        buf.ingest("s1", b"old screen content")
        assert buf.ingest("s1", b"\x1b[H\x1b[2Jnew screen") == "new screen"

    def test_cap_keeps_most_recent_tail(self):
        buf = StreamBuffer(cap=10)
        assert buf.ingest("s1", b"0123456789abcdef") == "6789abcdef"

    def test_split_utf8_character(self):
        buf = StreamBuffer()
        encoded = "…".encode("utf-8")
        buf.ingest("s1", encoded[:1])
        assert buf.ingest("s1", encoded[1:]) == "…"

    def test_malformed_bytes_replaced(self):
        buf = StreamBuffer()
        assert buf.ingest("s1", b"ok\xff!") == "ok�!"

    def test_consume_drops_prefix(self):
        buf = StreamBuffer()
        buf.ingest("s1", b"match rest")
        assert buf.consume("s1", 5) == " rest"
        assert buf.get("s1") == " rest"

    def test_discard(self):
        buf = StreamBuffer()
        buf.ingest("s1", b"x")
        buf.discard("s1")
        assert "s1" not in buf
        assert buf.get("s1") == ""
