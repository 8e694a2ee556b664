from struct import pack
from typing import Iterator, Union

from loguru import logger

from .chunk import ARSCHeader, RES_STRING_POOL_TYPE
from .cursor import Buffer, ByteCursor
from .errors import MalformedChunkError, OutOfBoundsError, UnsupportedConstructError

# Flags in the STRING Section
SORTED_FLAG = 1 << 0
UTF8_FLAG = 1 << 8

# Field offsets inside ResStringPool_header, relative to the chunk start
STRING_COUNT_OFFSET = 8
STRINGS_START_OFFSET = 20
STYLES_START_OFFSET = 24
STRING_POOL_HEADER_SIZE = 0x1C


def decode_length(
    cursor: ByteCursor, offset: int, sizeof_char: int
) -> tuple[int, int]:
    """
    Generic Length Decoding at offset of string

    The method works for both 8 and 16 bit Strings.
    * 8 bit strings: one byte, or two bytes giving a 15 bit length if the high bit of the first is set
    * 16 bit strings: one word, or two words giving a 31 bit length if the high bit of the first is set

    See http://androidxref.com/9.0.0_r3/xref/frameworks/base/libs/androidfw/ResourceTypes.cpp#670

    :param cursor: cursor over the buffer holding the pool
    :param offset: absolute offset of the length prefix
    :param sizeof_char: number of bytes per char (1 = 8bit, 2 = 16bit)
    :returns: tuple of (length, read bytes)
    """
    read = cursor.u8_at if sizeof_char == 1 else cursor.u16_at
    highbit = 0x80 << (8 * (sizeof_char - 1))

    length1 = read(offset)
    if (length1 & highbit) != 0:
        length2 = read(offset + sizeof_char)
        return ((length1 & ~highbit) << (8 * sizeof_char)) | length2, sizeof_char << 1

    return length1, sizeof_char


def encode_length16(length: int) -> bytes:
    """
    Inverse of [decode_length][apkres.stringblock.decode_length] for 16 bit strings
    """
    if length > 0x7FFF:
        if length > 0x7FFFFFFF:
            raise UnsupportedConstructError(
                "length of UTF-16 string is too large: {}".format(length)
            )
        return pack('<HH', (length >> 16) | 0x8000, length & 0xFFFF)
    return pack('<H', length)


class StringBlock:
    """
    StringBlock is a CHUNK inside an AXML or ARSC File: `ResStringPool_header`
    It contains all strings, which are used by referencing to ID's

    All strings are decoded eagerly by [decode][apkres.stringblock.StringBlock.decode].
    A pool backed by a `bytearray` can grow by
    [add_string][apkres.stringblock.StringBlock.add_string].

    See http://androidxref.com/9.0.0_r3/xref/frameworks/base/libs/androidfw/include/androidfw/ResourceTypes.h#436
    """

    def __init__(self, buff: Union[Buffer, ByteCursor], header: ARSCHeader, log=None) -> None:
        """
        :param buff: buffer which holds the string block
        :param header: a instance of [ARSCHeader][apkres.chunk.ARSCHeader]
        :param log: loguru logger used for diagnostics
        """
        self.log = log or logger
        self.cursor = buff if isinstance(buff, ByteCursor) else ByteCursor(buff)
        self.header = header

        if header.header_size < STRING_POOL_HEADER_SIZE:
            raise MalformedChunkError(
                "String pool header size is {}, expected at least {}! Offset={}".format(
                    header.header_size, STRING_POOL_HEADER_SIZE, header.start
                )
            )

        cursor = self.cursor
        cursor.seek(header.start + ARSCHeader.SIZE)
        self.string_count = cursor.read_u32()
        self.style_count = cursor.read_u32()
        self.flags = cursor.read_u32()
        # The string offset is counted from the beginning of the string section
        self.strings_start = cursor.read_u32()
        # The styles offset is counted as well from the beginning of the string section
        self.styles_start = cursor.read_u32()

        self.log.debug(
            "StringBlock: stringCount={} styleCount={} flags=0x{:x} stringsStart={} stylesStart={}",
            self.string_count,
            self.style_count,
            self.flags,
            self.strings_start,
            self.styles_start,
        )

        # Check if they supplied a stylesOffset even if the count is 0:
        if self.style_count == 0 and self.styles_start > 0:
            self.log.info(
                "Styles Offset given, but styleCount is zero. "
                "This is not a problem but could indicate packers."
            )

        if (header.size - self.strings_start) % 4 != 0:
            self.log.warning("Size of strings is not aligned by four bytes.")

        self.strings = []
        for i in range(self.string_count):
            self.strings.append(self._decode_at(self._string_offset(i)))
            self.log.debug("string[{}]: {!r}", i, self.strings[-1])

    @classmethod
    def decode(cls, buff: Union[Buffer, ByteCursor], offset: int, log=None) -> "StringBlock":
        """
        Decode the string pool chunk starting at `offset`

        :raises MalformedChunkError: if the chunk header is not a string pool
        :raises OutOfBoundsError: if a string leaves the buffer
        """
        header = ARSCHeader(buff, offset, expected_type=RES_STRING_POOL_TYPE, log=log)
        return cls(buff, header, log=log)

    def __repr__(self):
        return "<StringPool #strings={}, #styles={}, UTF8={}>".format(
            self.string_count, self.style_count, self.is_utf8
        )

    def __getitem__(self, idx: int) -> str:
        """
        Returns the string at the index in the string table

        :raises OutOfBoundsError: for an index outside the table
        """
        if idx < 0 or idx >= len(self.strings):
            raise OutOfBoundsError(
                "String index {} is outside of the string pool ({} strings)".format(
                    idx, len(self.strings)
                )
            )
        return self.strings[idx]

    def __len__(self) -> int:
        return len(self.strings)

    def __iter__(self) -> Iterator[str]:
        return iter(self.strings)

    @property
    def is_utf8(self) -> bool:
        return (self.flags & UTF8_FLAG) != 0

    @property
    def is_sorted(self) -> bool:
        return (self.flags & SORTED_FLAG) != 0

    @property
    def data_start(self) -> int:
        """Absolute offset of the string data section"""
        return self.header.start + self.strings_start

    def _string_offset(self, idx: int) -> int:
        """Absolute offset of the string with the given index"""
        entry = self.cursor.u32_at(self.header.start + self.header.header_size + idx * 4)
        return self.data_start + entry

    def _decode_at(self, offset: int) -> str:
        if self.is_utf8:
            return self._decode8(offset)
        return self._decode16(offset)

    def _decode8(self, offset: int) -> str:
        """
        Decode an UTF-8 String at the given offset

        :param offset: absolute offset of the string
        :raises OutOfBoundsError: if the string leaves the buffer
        :return: the decoded string
        """
        # UTF-8 Strings contain two lengths, as they might differ:
        # 1) the UTF-16 length
        str_len, skip = decode_length(self.cursor, offset, 1)
        offset += skip

        # 2) the utf-8 string length
        encoded_bytes, skip = decode_length(self.cursor, offset, 1)
        offset += skip

        data = self.cursor.bytes_at(offset, encoded_bytes)
        return self._decode_bytes(data, 'utf-8', str_len)

    def _decode16(self, offset: int) -> str:
        """
        Decode an UTF-16 String at the given offset

        :param offset: absolute offset of the string
        :raises OutOfBoundsError: if the string leaves the buffer
        :return: the decoded string
        """
        str_len, skip = decode_length(self.cursor, offset, 2)
        offset += skip

        # The len is the string len in utf-16 units
        data = self.cursor.bytes_at(offset, str_len * 2)
        return self._decode_bytes(data, 'utf-16-le', str_len)

    def _decode_bytes(self, data: bytes, encoding: str, str_len: int) -> str:
        """
        Generic decoding with length check.
        The string is decoded from bytes with the given encoding, then the length
        of the string is checked.
        The string is decoded using the "replace" method.
        """
        string = data.decode(encoding, 'replace')
        if encoding == 'utf-8' and len(string.encode('utf-16-le')) // 2 != str_len:
            self.log.warning("invalid decoded string length")
        return string

    def add_string(self, text: str) -> tuple[int, int]:
        """
        Append `text` to a UTF-16 pool, growing the chunk in place.

        The string is written right after the last stored string, a new entry
        is added to the offset table, and the string count, strings start
        (styles start) and chunk size fields are updated. Every byte behind
        the insertion points moves; callers tracking absolute offsets past
        this chunk must shift them by the returned byte count.

        :param text: the string to append
        :raises UnsupportedConstructError: if the pool is UTF-8 encoded
        :returns: tuple of (index of the new string, number of bytes inserted)
        """
        if self.is_utf8:
            raise UnsupportedConstructError(
                "Adding strings in UTF-8 format is not supported yet"
            )

        cursor = self.cursor
        start = self.header.start
        old_count = self.string_count

        # a) string count
        self.string_count = cursor.u32_at(start + STRING_COUNT_OFFSET) + 1
        cursor.write_u32(start + STRING_COUNT_OFFSET, self.string_count)

        # b) the new string goes right behind the terminator of the last one
        if old_count:
            last = self._string_offset(old_count - 1)
            length, skip = decode_length(cursor, last, 2)
            insert_at = last + skip + length * 2 + 2
        else:
            insert_at = self.data_start

        # c) length prefix, utf-16 units, terminator and padding, so that the
        # string plus its 4 byte offset entry keep the chunk 4 byte aligned
        encoded = text.encode('utf-16-le')
        string_bytes = encode_length16(len(encoded) // 2) + encoded + b"\x00\x00"
        string_bytes += b"\x00" * ((4 - (len(string_bytes) + 4) % 4) % 4)

        # d) string data first, it lies behind the offset table
        cursor.insert(insert_at, string_bytes)
        # e) offset entry, relative to the string data section
        entry_at = start + self.header.header_size + old_count * 4
        cursor.insert(entry_at, pack('<L', insert_at - self.data_start))
        bytes_added = len(string_bytes) + 4

        # f) strings start moved by one table entry
        self.strings_start = cursor.u32_at(start + STRINGS_START_OFFSET) + 4
        cursor.write_u32(start + STRINGS_START_OFFSET, self.strings_start)
        if self.style_count and self.styles_start:
            self.styles_start = cursor.u32_at(start + STYLES_START_OFFSET) + bytes_added
            cursor.write_u32(start + STYLES_START_OFFSET, self.styles_start)

        # g) chunk size
        cursor.write_u32(start + 4, cursor.u32_at(start + 4) + bytes_added)
        self.header.grow(bytes_added)

        self.strings.append(text)
        self.log.debug(
            "add_string: {!r} as #{} at 0x{:08x}, {} bytes added",
            text,
            self.string_count - 1,
            insert_at,
            bytes_added,
        )
        return self.string_count - 1, bytes_added

