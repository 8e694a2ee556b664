from struct import pack_into, unpack_from
from typing import Union

from .errors import OutOfBoundsError

Buffer = Union[bytes, bytearray, memoryview]


class ByteCursor:
    """
    Sequential and random access reader over a byte buffer.

    All reads are little endian and bounds checked: reading past the end of
    the buffer raises [OutOfBoundsError][apkres.errors.OutOfBoundsError]
    instead of returning short data.

    Writes (`write_u32`, `insert`) are only possible when the cursor wraps a
    `bytearray`; the cursor never copies the buffer, so the caller sees every
    mutation.
    """

    def __init__(self, buff: Buffer, pos: int = 0) -> None:
        self.buff = buff
        self.pos = pos

    def __len__(self) -> int:
        return len(self.buff)

    def __repr__(self):
        return "<ByteCursor pos=0x{:08x} size=0x{:x}>".format(
            self.pos, len(self.buff)
        )

    def tell(self) -> int:
        return self.pos

    def seek(self, pos: int) -> None:
        if pos < 0 or pos > len(self.buff):
            raise OutOfBoundsError(
                "Can not seek to 0x{:x}, buffer size is 0x{:x}".format(
                    pos, len(self.buff)
                )
            )
        self.pos = pos

    def skip(self, count: int) -> None:
        self.seek(self.pos + count)

    def eof(self) -> bool:
        return self.pos >= len(self.buff)

    def check(self, offset: int, size: int) -> None:
        """
        Make sure that `size` bytes can be read at `offset`

        :raises OutOfBoundsError: if the range leaves the buffer
        """
        if offset < 0 or size < 0 or offset + size > len(self.buff):
            raise OutOfBoundsError(
                "Can not read {} bytes at offset 0x{:x}, buffer size is 0x{:x}".format(
                    size, offset, len(self.buff)
                )
            )

    def _unpack(self, fmt: str, size: int) -> int:
        self.check(self.pos, size)
        (value,) = unpack_from(fmt, self.buff, self.pos)
        self.pos += size
        return value

    def read_u8(self) -> int:
        return self._unpack('<B', 1)

    def read_u16(self) -> int:
        return self._unpack('<H', 2)

    def read_u32(self) -> int:
        return self._unpack('<L', 4)

    def u8_at(self, offset: int) -> int:
        self.check(offset, 1)
        return self.buff[offset]

    def u16_at(self, offset: int) -> int:
        self.check(offset, 2)
        return unpack_from('<H', self.buff, offset)[0]

    def u32_at(self, offset: int) -> int:
        self.check(offset, 4)
        return unpack_from('<L', self.buff, offset)[0]

    def bytes_at(self, offset: int, size: int) -> bytes:
        self.check(offset, size)
        return bytes(self.buff[offset : offset + size])

    def write_u32(self, offset: int, value: int) -> None:
        self.check(offset, 4)
        pack_into('<L', self.buff, offset, value & 0xFFFFFFFF)

    def insert(self, offset: int, data: bytes) -> None:
        """
        Splice `data` into the buffer at `offset`, moving everything behind it
        """
        # inserting at the very end is allowed, past it is not
        self.check(offset, 0)
        self.buff[offset:offset] = data
