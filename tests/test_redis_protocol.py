"""Tests for redis-cli command rendering and CSV reply parsing."""

import pytest

from datastore_migrator.core.redis_protocol import (
    ReplyParseError,
    as_int,
    is_error,
    parse_reply,
    quote_arg,
    render_command,
    split_replies,
)
from tests.fakes import split_command_line


class TestQuoting:
    def test_plain_text_is_quoted(self):
        assert quote_arg("user:1") == '"user:1"'

    def test_special_bytes_are_escaped(self):
        assert quote_arg(b'a"b\\c\n') == '"a\\"b\\\\c\\n"'
        assert quote_arg(b"\x00\xff") == '"\\x00\\xff"'

    def test_numbers_render_as_ascii(self):
        assert render_command("PEXPIREAT", b"k", 1700000000000) == 'PEXPIREAT "k" "1700000000000"'

    def test_command_without_arguments(self):
        assert render_command("DBSIZE") == "DBSIZE"

    def test_rendered_line_splits_back_to_original_bytes(self):
        key = bytes(range(256))
        value = "naïve \"quoted\" value\r\n".encode()
        argv = split_command_line(render_command("SET", key, value).encode())
        assert argv == [b"SET", key, value]


class TestParsing:
    def test_quoted_fields_are_bytes(self):
        assert parse_reply(b'"a","b\\x00c"') == [b"a", b"b\x00c"]

    def test_bare_fields_are_text(self):
        assert parse_reply(b"42") == ["42"]
        assert parse_reply(b"NULL") == ["NULL"]

    def test_empty_line_is_empty_array(self):
        assert parse_reply(b"") == []

    def test_error_reply(self):
        values = parse_reply(b'ERROR,"WRONGTYPE Operation against a key"')
        assert is_error(values)
        assert values[1] == b"WRONGTYPE Operation against a key"

    def test_escapes_are_decoded(self):
        assert parse_reply(b'"tab\\there\\"\\\\"') == [b'tab\there"\\']

    def test_commas_inside_quotes(self):
        assert parse_reply(b'"a,b",1') == [b"a,b", "1"]

    def test_unterminated_string_raises(self):
        with pytest.raises(ReplyParseError):
            parse_reply(b'"never closed')

    def test_garbage_after_field_raises(self):
        with pytest.raises(ReplyParseError):
            parse_reply(b'"a"x')

    def test_round_trip_through_quote(self):
        raw = b"\x01\x02 line\nbreak \xe2\x82\xac"
        assert parse_reply(quote_arg(raw).encode()) == [raw]


class TestHelpers:
    def test_split_replies_keeps_blank_reply_lines(self):
        assert split_replies(b'"OK"\n\n3\n') == [b'"OK"', b"", b"3"]

    def test_split_replies_empty_output(self):
        assert split_replies(b"") == []

    def test_as_int(self):
        assert as_int(["7"]) == 7
        with pytest.raises(ReplyParseError):
            as_int([b"7"])
