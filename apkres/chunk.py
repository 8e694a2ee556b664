from typing import Callable, Mapping, TypeVar, Union

from loguru import logger

from .cursor import Buffer, ByteCursor
from .errors import MalformedChunkError, UnknownChunkTypeError

# Constants for ARSC Files
# see http://aospxref.com/android-13.0.0_r3/xref/frameworks/base/libs/androidfw/include/androidfw/ResourceTypes.h#233
RES_NULL_TYPE = 0x0000
RES_STRING_POOL_TYPE = 0x0001
RES_TABLE_TYPE = 0x0002
RES_XML_TYPE = 0x0003

RES_XML_FIRST_CHUNK_TYPE = 0x0100
RES_XML_START_NAMESPACE_TYPE = 0x0100
RES_XML_END_NAMESPACE_TYPE = 0x0101
RES_XML_START_ELEMENT_TYPE = 0x0102
RES_XML_END_ELEMENT_TYPE = 0x0103
RES_XML_CDATA_TYPE = 0x0104
RES_XML_LAST_CHUNK_TYPE = 0x017F

RES_XML_RESOURCE_MAP_TYPE = 0x0180

RES_TABLE_PACKAGE_TYPE = 0x0200
RES_TABLE_TYPE_TYPE = 0x0201
RES_TABLE_TYPE_SPEC_TYPE = 0x0202
RES_TABLE_LIBRARY_TYPE = 0x0203

CHUNK_NAMES = {
    RES_NULL_TYPE: "RES_NULL_TYPE",
    RES_STRING_POOL_TYPE: "RES_STRING_POOL_TYPE",
    RES_TABLE_TYPE: "RES_TABLE_TYPE",
    RES_XML_TYPE: "RES_XML_TYPE",
    RES_XML_START_NAMESPACE_TYPE: "RES_XML_START_NAMESPACE_TYPE",
    RES_XML_END_NAMESPACE_TYPE: "RES_XML_END_NAMESPACE_TYPE",
    RES_XML_START_ELEMENT_TYPE: "RES_XML_START_ELEMENT_TYPE",
    RES_XML_END_ELEMENT_TYPE: "RES_XML_END_ELEMENT_TYPE",
    RES_XML_CDATA_TYPE: "RES_XML_CDATA_TYPE",
    RES_XML_RESOURCE_MAP_TYPE: "RES_XML_RESOURCE_MAP_TYPE",
    RES_TABLE_PACKAGE_TYPE: "RES_TABLE_PACKAGE_TYPE",
    RES_TABLE_TYPE_TYPE: "RES_TABLE_TYPE_TYPE",
    RES_TABLE_TYPE_SPEC_TYPE: "RES_TABLE_TYPE_SPEC_TYPE",
    RES_TABLE_LIBRARY_TYPE: "RES_TABLE_LIBRARY_TYPE",
}

T = TypeVar("T")


def chunk_name(chunk_type: int) -> str:
    return CHUNK_NAMES.get(chunk_type, "0x{:04x}".format(chunk_type))


class ARSCHeader:
    """
    Object which contains a Resource Chunk.
    This is an implementation of the `ResChunk_header`.

    It will throw an [MalformedChunkError][apkres.errors.MalformedChunkError] if the header could not be read
    successfully, if the declared sizes are inconsistent or if the chunk does not fit into the buffer.

    The parameter `expected_type` can be used to immediately check the header for the type.
    This is useful if you know what type of chunk must follow.

    See http://androidxref.com/9.0.0_r3/xref/frameworks/base/libs/androidfw/include/androidfw/ResourceTypes.h#196
    """

    # This is the minimal size such a header must have. There might be other header data too!
    SIZE = 2 + 2 + 4

    def __init__(
        self,
        buff: Union[Buffer, ByteCursor],
        offset: int,
        expected_type: Union[int, None] = None,
        log=None,
    ) -> None:
        """
        :raises MalformedChunkError: if header malformed
        :param buff: the buffer (or a cursor over it) which holds the chunk
        :param offset: absolute offset where the header starts
        :param int expected_type: the type of the header which is expected.
        :param log: loguru logger used for diagnostics, defaults to the package logger
        """
        cursor = buff if isinstance(buff, ByteCursor) else ByteCursor(buff)
        self.start = offset

        # Make sure we do not read over the buffer:
        if len(cursor) < self.start + self.SIZE:
            raise MalformedChunkError(
                "Can not read over the buffer size! Offset={}".format(
                    self.start
                )
            )

        self._type = cursor.u16_at(offset)
        self._header_size = cursor.u16_at(offset + 2)
        self._size = cursor.u32_at(offset + 4)
        (log or logger).debug(
            "ARSCHeader: {} {} {}", chunk_name(self._type), self._header_size, self._size
        )

        if expected_type is not None and self._type != expected_type:
            raise MalformedChunkError(
                "Header type is not equal the expected type: Got 0x{:04x}, wanted 0x{:04x}".format(
                    self._type, expected_type
                )
            )

        # Assert that the read data will fit into the chunk.
        # The total size must be equal or larger than the header size
        if self._header_size < self.SIZE:
            raise MalformedChunkError(
                "declared header size is smaller than required size of {}! Offset={}".format(
                    self.SIZE, self.start
                )
            )
        if self._size < self._header_size:
            raise MalformedChunkError(
                "declared chunk size ({}) is smaller than header size ({})! Offset={}".format(
                    self._size, self._header_size, self.start
                )
            )
        if self.start + self._size > len(cursor):
            raise MalformedChunkError(
                "declared chunk size ({}) exceeds the buffer ({})! Offset={}".format(
                    self._size, len(cursor), self.start
                )
            )

    @property
    def type(self) -> int:
        """
        Type identifier for this chunk
        """
        return self._type

    @property
    def header_size(self) -> int:
        """
        Size of the chunk header (in bytes).  Adding this value to
        the address of the chunk allows you to find its associated data
        (if any).
        """
        return self._header_size

    @property
    def size(self) -> int:
        """
        Total size of this chunk (in bytes).  This is the chunkSize plus
        the size of any data associated with the chunk.  Adding this value
        to the chunk allows you to completely skip its contents (including
        any child chunks).
        """
        return self._size

    @property
    def end(self) -> int:
        """
        Get the absolute offset inside the file, where the chunk ends.
        This is equal to `ARSCHeader.start + ARSCHeader.size`.
        """
        return self.start + self._size

    def grow(self, count: int) -> None:
        self._size += count

    def __repr__(self):
        return "<ARSCHeader idx='0x{:08x}' type='{}' header_size='{}' size='{}'>".format(
            self.start, chunk_name(self.type), self.header_size, self.size
        )


def peek_type(buff: Union[Buffer, ByteCursor], offset: int) -> int:
    """
    Read the 2-byte type tag of the chunk starting at `offset`
    """
    cursor = buff if isinstance(buff, ByteCursor) else ByteCursor(buff)
    return cursor.u16_at(offset)


def dispatch(
    buff: Union[Buffer, ByteCursor],
    offset: int,
    decoders: Mapping[int, Callable[[int], T]],
) -> T:
    """
    Build the chunk at `offset` with the decoder registered for its type tag.

    :param decoders: maps a chunk type to a callable taking the chunk offset
    :raises UnknownChunkTypeError: if no decoder is registered for the tag
    """
    chunk_type = peek_type(buff, offset)
    decoder = decoders.get(chunk_type)
    if decoder is None:
        raise UnknownChunkTypeError(
            "chunk type error: type:0x{:04x} at offset 0x{:08x}".format(
                chunk_type, offset
            )
        )
    return decoder(offset)
