"""Fixed-offset decoding of 512-byte tar header blocks."""

from __future__ import annotations

from dataclasses import dataclass

from cd4pe_job_runner.errors import ArchiveFormatError

BLOCK_SIZE = 512
END_BLOCK = bytes(BLOCK_SIZE)

NAME_FIELD = slice(0, 100)
MODE_FIELD = slice(100, 108)
SIZE_FIELD = slice(124, 136)
CHECKSUM_FIELD = slice(148, 156)
TYPE_FLAG_OFFSET = 156
MAGIC_FIELD = slice(257, 263)
PREFIX_FIELD = slice(345, 500)

REGULAR_TYPES = frozenset({b"0", b"\0", b"7"})
DIRECTORY_TYPE = b"5"
GNU_LONG_NAME_TYPE = b"L"
PAX_HEADER_TYPE = b"x"


@dataclass(frozen=True, slots=True)
class TarHeader:
    """Decoded fields of one tar header block."""

    name: str
    mode: int
    size: int
    type_flag: bytes

    @property
    def is_long_name(self) -> bool:
        return self.type_flag == GNU_LONG_NAME_TYPE

    @property
    def is_pax_header(self) -> bool:
        return self.type_flag == PAX_HEADER_TYPE

    @property
    def is_directory(self) -> bool:
        # Pre-POSIX archives mark directories with a trailing slash only.
        return self.type_flag == DIRECTORY_TYPE or (
            self.type_flag == b"\0" and self.name.endswith("/")
        )

    @property
    def is_file(self) -> bool:
        return self.type_flag in REGULAR_TYPES and not self.is_directory


def is_end_block(block: bytes) -> bool:
    return block == END_BLOCK


def padded_size(size: int) -> int:
    """Size rounded up to the next block boundary."""

    return -(-size // BLOCK_SIZE) * BLOCK_SIZE


def parse_header(block: bytes) -> TarHeader:
    """Decode and checksum-verify one header block."""

    if len(block) != BLOCK_SIZE:
        raise ArchiveFormatError(f"Truncated tar header: {len(block)} of {BLOCK_SIZE} bytes")
    verify_checksum(block)

    name = decode_name(block[NAME_FIELD])
    if block[MAGIC_FIELD].startswith(b"ustar"):
        prefix = decode_name(block[PREFIX_FIELD])
        if prefix:
            name = f"{prefix}/{name}"

    size = parse_number(block[SIZE_FIELD], field_name="size")
    if size < 0:
        raise ArchiveFormatError(f"Negative entry size in tar header for {name!r}")
    return TarHeader(
        name=name,
        mode=parse_number(block[MODE_FIELD], field_name="mode") & 0o7777,
        size=size,
        type_flag=block[TYPE_FLAG_OFFSET : TYPE_FLAG_OFFSET + 1],
    )


def decode_name(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("utf-8", errors="surrogateescape")


def parse_number(raw: bytes, *, field_name: str) -> int:
    """Parse an octal text field, or a GNU base-256 field when the high bit is set."""

    if raw and raw[0] in (0o200, 0o377):
        value = 0
        for byte in raw[1:]:
            value = (value << 8) + byte
        if raw[0] == 0o377:
            value = -(256 ** (len(raw) - 1) - value)
        return value

    text = raw.split(b"\0", 1)[0].strip(b" ")
    if not text:
        return 0
    try:
        return int(text, 8)
    except ValueError as error:
        raise ArchiveFormatError(f"Invalid octal {field_name} field: {raw!r}") from error


def verify_checksum(block: bytes) -> None:
    expected = parse_number(block[CHECKSUM_FIELD], field_name="checksum")
    blanked = block[: CHECKSUM_FIELD.start] + b" " * 8 + block[CHECKSUM_FIELD.stop :]
    unsigned = sum(blanked)
    # Some historic implementations summed signed chars.
    signed = sum(byte - 256 if byte > 127 else byte for byte in blanked)
    if expected not in (unsigned, signed):
        raise ArchiveFormatError(
            f"Tar header checksum mismatch: expected {expected}, computed {unsigned}",
        )


def parse_pax_records(data: bytes) -> dict[str, str]:
    """Decode ``"<length> <key>=<value>\\n"`` records of a pax extended header."""

    records: dict[str, str] = {}
    position = 0
    while position < len(data):
        if data[position] == 0:
            break
        space = data.find(b" ", position)
        if space == -1:
            raise ArchiveFormatError("Malformed pax header record")
        try:
            length = int(data[position:space])
        except ValueError as error:
            raise ArchiveFormatError("Malformed pax header record length") from error
        record = data[space + 1 : position + length]
        if length <= 0 or not record.endswith(b"\n") or b"=" not in record:
            raise ArchiveFormatError("Malformed pax header record")
        key, _, value = record[:-1].partition(b"=")
        records[key.decode("utf-8", errors="surrogateescape")] = value.decode(
            "utf-8",
            errors="surrogateescape",
        )
        position += length
    return records
