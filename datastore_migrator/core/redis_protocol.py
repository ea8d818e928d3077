"""redis-cli command rendering and ``--csv`` reply parsing.

Replies are read with ``redis-cli --csv``, which prints every string
argument escaped (``\\n``, ``\\"``, ``\\xHH`` ...) and one reply per line.
Commands are written back using the same escape grammar redis-cli applies
when splitting its input lines, so arbitrary binary keys and values survive
the round trip.
"""

from typing import Union

CsvValue = Union[bytes, str]

_ESCAPE_OUT = {
    ord("\\"): b"\\\\",
    ord('"'): b'\\"',
    ord("\n"): b"\\n",
    ord("\r"): b"\\r",
    ord("\t"): b"\\t",
    0x07: b"\\a",
    0x08: b"\\b",
}
_ESCAPE_IN = {
    ord("n"): ord("\n"),
    ord("r"): ord("\r"),
    ord("t"): ord("\t"),
    ord("a"): 0x07,
    ord("b"): 0x08,
}
_HEX_DIGITS = set(b"0123456789abcdefABCDEF")


class ReplyParseError(ValueError):
    """A redis-cli reply line could not be parsed."""


def _to_bytes(value: bytes | str | int | float) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8")
    return str(value).encode("ascii")


def quote_arg(value: bytes | str | int | float) -> str:
    """Quote one argument for a redis-cli input line."""
    out = bytearray(b'"')
    for byte in _to_bytes(value):
        if byte in _ESCAPE_OUT:
            out += _ESCAPE_OUT[byte]
        elif 0x20 <= byte < 0x7F:
            out.append(byte)
        else:
            out += b"\\x%02x" % byte
    out += b'"'
    return out.decode("ascii")


def render_command(name: str, *args: bytes | str | int | float) -> str:
    """Render one redis-cli input line."""
    if not args:
        return name
    return name + " " + " ".join(quote_arg(arg) for arg in args)


def parse_reply(line: bytes) -> list[CsvValue]:
    """Parse one ``--csv`` reply line.

    Quoted fields come back as bytes with escapes decoded; bare fields
    (integers, ``NULL``, the ``ERROR`` marker) come back as str.
    """
    values: list[CsvValue] = []
    n = len(line)
    i = 0
    if n == 0:
        return values
    while True:
        if i < n and line[i] == ord('"'):
            buf = bytearray()
            i += 1
            while True:
                if i >= n:
                    raise ReplyParseError(f"Unterminated string in reply: {line[:80]!r}")
                c = line[i]
                if c == ord("\\") and i + 1 < n:
                    nxt = line[i + 1]
                    if (
                        nxt == ord("x")
                        and i + 3 < n
                        and line[i + 2] in _HEX_DIGITS
                        and line[i + 3] in _HEX_DIGITS
                    ):
                        buf.append(int(line[i + 2 : i + 4], 16))
                        i += 4
                    else:
                        buf.append(_ESCAPE_IN.get(nxt, nxt))
                        i += 2
                elif c == ord('"'):
                    i += 1
                    break
                else:
                    buf.append(c)
                    i += 1
            values.append(bytes(buf))
        else:
            end = line.find(b",", i)
            if end == -1:
                end = n
            values.append(line[i:end].decode("ascii", errors="replace"))
            i = end
        if i >= n:
            return values
        if line[i] != ord(","):
            raise ReplyParseError(f"Unexpected byte after field in reply: {line[:80]!r}")
        i += 1


def split_replies(output: bytes) -> list[bytes]:
    """Split redis-cli output into reply lines, dropping the trailing newline."""
    if not output:
        return []
    if output.endswith(b"\n"):
        output = output[:-1]
    return output.split(b"\n")


def is_error(values: list[CsvValue]) -> bool:
    return bool(values) and values[0] == "ERROR"


def as_int(values: list[CsvValue]) -> int:
    """Interpret a single-integer reply."""
    if len(values) != 1 or not isinstance(values[0], str):
        raise ReplyParseError(f"Expected integer reply, got {values!r}")
    try:
        return int(values[0])
    except ValueError as e:
        raise ReplyParseError(f"Expected integer reply, got {values!r}") from e
