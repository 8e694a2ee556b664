import re
from typing import Dict, List, NamedTuple, Optional, Union

from loguru import logger

from .chunk import (
    ARSCHeader,
    RES_STRING_POOL_TYPE,
    RES_TABLE_LIBRARY_TYPE,
    RES_TABLE_PACKAGE_TYPE,
    RES_TABLE_TYPE,
    RES_TABLE_TYPE_SPEC_TYPE,
    RES_TABLE_TYPE_TYPE,
    dispatch,
    peek_type,
)
from .cursor import Buffer, ByteCursor
from .errors import (
    InvalidIdFormatError,
    MalformedChunkError,
    UnresolvedResourceError,
)
from .internal_types import NO_INDEX, TYPE_REFERENCE, TYPE_STRING
from .stringblock import StringBlock
from .values import TYPE_TABLE, format_value

HEX_ID = re.compile(r"^@?0x[0-9a-fA-F]{8}$")
READABLE_ID = re.compile(r"^@?(\w+)/([\w.]+)$")

# ResTable_package: header, id, name[128], typeStrings, lastPublicType, keyStrings, lastPublicKey
PACKAGE_NAME_SIZE = 256
# ResTable_lib_entry: packageId, packageName[128]
LIBRARY_ENTRY_SIZE = 4 + 256


def is_arsc(data: Buffer) -> bool:
    """
    A resource table starts with the table header (or directly with its
    global string pool)
    """
    if len(data) < ARSCHeader.SIZE:
        return False
    return peek_type(data, 0) in (RES_STRING_POOL_TYPE, RES_TABLE_TYPE)


def _utf16_name(data: bytes) -> str:
    name = data.decode('utf-16-le', 'replace')
    return name.split('\x00', 1)[0].strip()


def _unpack_locale(data: bytes, base: str) -> Optional[str]:
    """
    Decode a language or region code of a ResTable_config.

    Two ASCII characters, or a packed three letter code if the high bit of
    the first byte is set. `None` if both bytes are zero.
    """
    if data == b"\x00\x00":
        return None
    if data[0] & 0x80:
        first = data[1] & 0x1F
        second = ((data[1] & 0xE0) >> 5) + ((data[0] & 0x03) << 3)
        third = (data[0] & 0x7C) >> 2
        return "".join(chr(ord(base) + x) for x in (first, second, third))
    return data.decode('ascii', 'replace')


class ResValue:
    """
    `Res_value`: size, res0 (always 0), data type and data
    """

    SIZE = 8

    def __init__(self, cursor: ByteCursor, offset: int) -> None:
        self.size = cursor.u16_at(offset)
        self.data_type = cursor.u8_at(offset + 3)
        self.data = cursor.u32_at(offset + 4)

    def format(self, lookup_string=lambda ix: "<string>") -> str:
        return format_value(self.data_type, self.data, lookup_string)

    def __repr__(self):
        return "<ResValue type={} data=0x{:08x}>".format(
            TYPE_TABLE.get(self.data_type, self.data_type), self.data
        )


class ResTableEntry:
    """
    A single value of a ResTable_type, followed by its `Res_value`
    """

    # If set, this is a complex entry, holding a set of name/value
    # mappings.  It is followed by an array of ResTable_map structures.
    FLAG_COMPLEX = 0x01
    # If set, this resource has been declared public, so libraries
    # are allowed to reference it.
    FLAG_PUBLIC = 0x02

    def __init__(self, cursor: ByteCursor, offset: int) -> None:
        self.offset = offset
        self.size = cursor.u16_at(offset)
        self.flags = cursor.u16_at(offset + 2)
        # index into the key string pool of the package
        self.key = cursor.u32_at(offset + 4)
        self.value = self._read_value(cursor)

    def _read_value(self, cursor: ByteCursor) -> Optional[ResValue]:
        return ResValue(cursor, self.offset + max(self.size, 8))

    @staticmethod
    def read_entry(cursor: ByteCursor, offset: int) -> "ResTableEntry":
        """
        :returns: a [ResTableMapEntry][apkres.arsc.ResTableMapEntry] if FLAG_COMPLEX is set,
            a [ResTableEntry][apkres.arsc.ResTableEntry] otherwise
        """
        if cursor.u16_at(offset + 2) & ResTableEntry.FLAG_COMPLEX:
            return ResTableMapEntry(cursor, offset)
        return ResTableEntry(cursor, offset)

    @property
    def is_complex(self) -> bool:
        return bool(self.flags & self.FLAG_COMPLEX)

    def __repr__(self):
        return "<ResTableEntry size={} key={} flags=0x{:x}>".format(
            self.size, self.key, self.flags
        )


class ResTableMapEntry(ResTableEntry):
    """
    A complex entry: a parent reference and the number of name/value pairs
    that follow. The pairs themselves are not decoded.
    """

    def _read_value(self, cursor: ByteCursor) -> None:
        # resource identifier of the parent mapping, 0 if there is none.
        self.parent = cursor.u32_at(self.offset + 8)
        # number of name/value pairs that follow
        self.count = cursor.u32_at(self.offset + 12)
        return None

    def __repr__(self):
        return "<ResTableMapEntry key={} parent=0x{:08x} count={}>".format(
            self.key, self.parent, self.count
        )


class ResTableConfig:
    """
    `ResTable_config`: the qualifiers of a ResTable_type.

    Only the locale is interpreted, the other fields are kept as read. Fields
    which do not fit into the declared size of the record are 0.
    """

    def __init__(self, cursor: ByteCursor, offset: int) -> None:
        self.start = offset
        self.size = cursor.u32_at(offset)
        self.raw = cursor.bytes_at(offset, max(self.size, 4))

        self.imsi = self._u32(4)
        self.locale_lang = None
        self.locale_country = None
        if self.size >= 12:
            self.locale_lang = _unpack_locale(self.raw[8:10], 'a')
            self.locale_country = _unpack_locale(self.raw[10:12], '0')
        self.screen_type = self._u32(12)
        self.input = self._u32(16)
        self.screen_size = self._u32(20)
        self.version = self._u32(24)
        self.screen_config = self._u32(28)

    def _u32(self, pos: int) -> int:
        if pos + 4 > len(self.raw):
            return 0
        return int.from_bytes(self.raw[pos : pos + 4], 'little')

    @property
    def is_default(self) -> bool:
        return self.locale_lang is None and self.locale_country is None

    def __repr__(self):
        return "<ResTableConfig size:{}, imsi:{}, la:'{}' cn:'{}'>".format(
            self.size, self.imsi, self.locale_lang, self.locale_country
        )


class ResTableTypeSpec:
    """
    `ResTable_typeSpec`: one flag word per entry, declaring which
    configurations the entry has variants for
    """

    def __init__(self, cursor: ByteCursor, header: ARSCHeader) -> None:
        self.header = header
        self.id = cursor.u8_at(header.start + 8)
        self.entry_count = cursor.u32_at(header.start + 12)
        cursor.seek(header.start + header.header_size)
        self.flags = [cursor.read_u32() for _ in range(self.entry_count)]

    def __repr__(self):
        return "<ResTableTypeSpec id:{} entry count:{}>".format(self.id, self.entry_count)


class ResTableType:
    """
    `ResTable_type`: the entries of one type for one configuration
    """

    # entries are stored as (index, offset / 4) pairs
    FLAG_SPARSE = 0x01

    def __init__(self, cursor: ByteCursor, header: ARSCHeader, package: "ResTablePackage") -> None:
        self.header = header
        start = header.start
        self.id = cursor.u8_at(start + 8)
        self.flags = cursor.u8_at(start + 9)
        self.entry_count = cursor.u32_at(start + 12)
        self.entries_start = cursor.u32_at(start + 16)
        self.config = ResTableConfig(cursor, start + 20)

        self.entries: List[Optional[ResTableEntry]] = [None] * self.entry_count
        self.keys: Dict[str, int] = {}

        cursor.seek(start + header.header_size)
        if self.flags & self.FLAG_SPARSE:
            # entry_count is the number of pairs here
            pairs = [(cursor.read_u16(), cursor.read_u16()) for _ in range(self.entry_count)]
            size = max([index + 1 for index, _ in pairs] + [0])
            self.entries = [None] * size
            for index, offset in pairs:
                self._add_entry(cursor, package, index, offset * 4)
        else:
            offsets = [cursor.read_u32() for _ in range(self.entry_count)]
            for index, offset in enumerate(offsets):
                if offset != NO_INDEX:
                    self._add_entry(cursor, package, index, offset)

    def _add_entry(self, cursor: ByteCursor, package: "ResTablePackage", index: int, offset: int) -> None:
        entry = ResTableEntry.read_entry(cursor, self.header.start + self.entries_start + offset)
        self.entries[index] = entry
        self.keys[package.key(entry.key)] = index

    def __getitem__(self, index: int) -> Optional[ResTableEntry]:
        """
        :returns: the entry, or None if the key has no value in this configuration
        """
        if 0 <= index < len(self.entries):
            return self.entries[index]
        return None

    def __repr__(self):
        return "<ResTableType offset:0x{:x}, id:{}, count:{}, start:0x{:x}>".format(
            self.header.start, self.id, self.entry_count, self.entries_start
        )


class ResTableLibrary(NamedTuple):
    package_id: int
    package_name: str


class ResTableLibraryType:
    """
    `ResTable_lib_header`: the shared libraries referenced by a package
    """

    def __init__(self, cursor: ByteCursor, header: ARSCHeader) -> None:
        self.header = header
        count = cursor.u32_at(header.start + 8)
        pos = header.start + header.header_size
        self.libraries = []
        for _ in range(count):
            self.libraries.append(
                ResTableLibrary(
                    cursor.u32_at(pos),
                    _utf16_name(cursor.bytes_at(pos + 4, LIBRARY_ENTRY_SIZE - 4)),
                )
            )
            pos += LIBRARY_ENTRY_SIZE

    def __repr__(self):
        return "<ResTableLibraryType library_count:{}>".format(len(self.libraries))


class ResTablePackage:
    """
    `ResTable_package`: type and key names plus the type, type spec and
    library chunks of one package.

    Resources are looked up with [find][apkres.arsc.ResTablePackage.find];
    only string, drawable and mipmap resources are resolved.
    """

    def __init__(self, cursor: ByteCursor, header: ARSCHeader, global_string_pool: StringBlock, log=None) -> None:
        self.log = log or logger
        self.header = header
        self.global_string_pool = global_string_pool
        start = header.start

        self.id = cursor.u32_at(start + 8) & 0xFF
        self.name = _utf16_name(cursor.bytes_at(start + 12, PACKAGE_NAME_SIZE))
        pos = start + 12 + PACKAGE_NAME_SIZE
        type_strings_offset = cursor.u32_at(pos)
        self.last_public_type = cursor.u32_at(pos + 4)
        key_strings_offset = cursor.u32_at(pos + 8)
        self.last_public_key = cursor.u32_at(pos + 12)
        self.log.debug(
            "Package 0x{:02x} '{}': typeStrings={} keyStrings={}",
            self.id,
            self.name,
            type_strings_offset,
            key_strings_offset,
        )

        self.type_strings = StringBlock.decode(cursor, start + type_strings_offset, log=self.log)
        self.key_strings = StringBlock.decode(cursor, start + key_strings_offset, log=self.log)

        self.types: Dict[int, List[ResTableType]] = {}
        self.specs: Dict[int, List[ResTableTypeSpec]] = {}
        self.libraries: List[ResTableLibrary] = []

        decoders = {
            RES_TABLE_TYPE_TYPE: lambda offset: self._add_type(cursor, offset),
            RES_TABLE_TYPE_SPEC_TYPE: lambda offset: self._add_spec(cursor, offset),
            RES_TABLE_LIBRARY_TYPE: lambda offset: self._add_library(cursor, offset),
        }
        offset = self.key_strings.header.end
        while offset < header.end:
            offset = dispatch(cursor, offset, decoders)

        # string types by locale, values are resolved on lookup
        self._strings_default: Dict[int, ResTableType] = {}
        self._strings_lang: Dict[str, ResTableType] = {}
        self._strings_country: Dict[str, ResTableType] = {}
        self._index_res_strings()

    def _add_type(self, cursor: ByteCursor, offset: int) -> int:
        h = ARSCHeader(cursor, offset, log=self.log)
        res_type = ResTableType(cursor, h, self)
        self.log.debug("{} {}", res_type, res_type.config)
        self.types.setdefault(res_type.id, []).append(res_type)
        return h.end

    def _add_spec(self, cursor: ByteCursor, offset: int) -> int:
        h = ARSCHeader(cursor, offset, log=self.log)
        spec = ResTableTypeSpec(cursor, h)
        self.log.debug("{}", spec)
        self.specs.setdefault(spec.id, []).append(spec)
        return h.end

    def _add_library(self, cursor: ByteCursor, offset: int) -> int:
        h = ARSCHeader(cursor, offset, log=self.log)
        library = ResTableLibraryType(cursor, h)
        self.log.debug("{}", library)
        self.libraries.extend(library.libraries)
        return h.end

    def __repr__(self):
        return "<ResTablePackage offset:0x{:08x}, size:0x{:x}, name:\"{}\">".format(
            self.header.start, self.header.size, self.name
        )

    @property
    def type_names(self) -> List[str]:
        return self.type_strings.strings

    def type(self, type_id: int) -> str:
        """
        :raises UnresolvedResourceError: for an unknown type id
        """
        if not 0 < type_id <= len(self.type_strings):
            raise UnresolvedResourceError("Unknown type id 0x{:02x}".format(type_id))
        return self.type_strings[type_id - 1]

    def type_id(self, name: str) -> int:
        """
        :raises UnresolvedResourceError: for an unknown type name
        """
        if name not in self.type_strings.strings:
            raise UnresolvedResourceError("Unknown type '{}'".format(name))
        return self.type_strings.strings.index(name) + 1

    @property
    def key_names(self) -> List[str]:
        return self.key_strings.strings

    def key(self, key_id: int) -> str:
        return self.key_strings[key_id]

    def find(self, res_id: str, lang: Optional[str] = None, country: Optional[str] = None):
        """
        find resource by resource id

        :param res_id: resource id like '@0x7f010001' or '@string/key'
        :param lang: language code like 'ja', 'cn'...
        :param country: country code like 'JP'...
        :raises InvalidIdFormatError: invalid id format
        :raises UnresolvedResourceError: if the id does not exist
        :returns: the string for string resources, the list of asset paths
            for drawable and mipmap resources, None for every other type
        """
        hex_id = self.strid2int(res_id)
        tid = (hex_id & 0xFF0000) >> 16
        key = hex_id & 0xFFFF

        type_name = self.type(tid)
        if type_name == 'string':
            return self._find_res_string(key, lang, country)
        if type_name in ('drawable', 'mipmap'):
            drawables = []
            for res_type in self.types.get(tid, []):
                entry = res_type[key]
                if entry is None or entry.value is None:
                    continue
                if entry.value.data_type == TYPE_STRING:
                    drawables.append(self.global_string_pool[entry.value.data])
            return drawables
        return None

    def _find_res_string(self, key: int, lang: Optional[str], country: Optional[str]) -> Optional[str]:
        res_type = None
        if lang is not None:
            res_type = self._strings_lang.get(lang)
        if country is not None:
            res_type = self._strings_country.get(country, res_type)

        if res_type is not None and res_type[key] is not None:
            value = self._lookup_string_value(res_type, key)
            if value is not None:
                return value

        # missing localized values fall back to the default
        if key in self._strings_default:
            return self._lookup_string_value(self._strings_default[key], key)
        raise UnresolvedResourceError("String resource 0x{:04x} not found".format(key))

    def strid2int(self, res_id: Union[str, int]) -> int:
        """
        convert string resource id to integer

        :param res_id: resource id like '@0x7f010001' or '@string/key'
        :raises InvalidIdFormatError: invalid format
        :returns: integer id (like 0x7f010001)
        """
        if isinstance(res_id, int):
            return res_id
        if HEX_ID.match(res_id):
            return int(res_id.lstrip('@'), 16)
        if READABLE_ID.match(res_id):
            return int(self.hex_id(res_id).lstrip('@'), 16)
        raise InvalidIdFormatError("Invalid resource id '{}'".format(res_id))

    def readable_id(self, hex_id: Union[str, int]) -> str:
        """
        :param hex_id: resource id like '@0x7f010001'
        :raises UnresolvedResourceError: if no configuration has an entry for the id
        :returns: readable resource id like '@string/key'
        """
        if isinstance(hex_id, str):
            if not HEX_ID.match(hex_id):
                raise InvalidIdFormatError("Invalid resource id '{}'".format(hex_id))
            hex_id = int(hex_id.lstrip('@'), 16)
        tid = (hex_id & 0xFF0000) >> 16
        key = hex_id & 0xFFFF

        for res_type in self.types.get(tid, []):
            entry = res_type[key]
            if entry is not None:
                return "@{}/{}".format(self.type(tid), self.key(entry.key))
        raise UnresolvedResourceError("Resource 0x{:08x} not found".format(hex_id))

    def hex_id(self, readable_id: str) -> str:
        """
        :param readable_id: resource id like '@string/key'
        :raises InvalidIdFormatError: invalid format
        :raises UnresolvedResourceError: unknown type or key
        :returns: hexoctet format resource id like '@0x7f010001'
        """
        match = READABLE_ID.match(readable_id)
        if match is None:
            raise InvalidIdFormatError("Invalid resource id '{}'".format(readable_id))
        type_name, key_name = match.groups()
        tid = self.type_id(type_name)
        if tid not in self.types:
            raise UnresolvedResourceError("No entries for type '{}'".format(type_name))

        # the key might only exist in some of the configurations
        for res_type in self.types[tid]:
            if key_name in res_type.keys:
                return "@0x{:02x}{:02x}{:04x}".format(self.id, tid, res_type.keys[key_name])
        raise UnresolvedResourceError("Resource '{}' not found".format(readable_id))

    def _index_res_strings(self) -> None:
        try:
            tid = self.type_id('string')
        except UnresolvedResourceError:
            return

        for res_type in self.types.get(tid, []):
            lang = res_type.config.locale_lang
            country = res_type.config.locale_country
            if lang is None and country is None:
                # first configuration holding a key wins
                for key, entry in enumerate(res_type.entries):
                    if entry is not None:
                        self._strings_default.setdefault(key, res_type)
            else:
                if lang is not None:
                    self._strings_lang[lang] = res_type
                if country is not None:
                    self._strings_country[country] = res_type

    def _lookup_string_value(self, res_type: ResTableType, index: int) -> Optional[str]:
        seen = {index}
        entry = res_type[index]
        while entry is not None and entry.value is not None:
            if entry.value.data_type != TYPE_REFERENCE:
                return entry.value.format(lambda ix: self.global_string_pool[ix])
            # this assumes that the value references another string resource,
            # i.e. we're ignoring the type id of the reference
            index = entry.value.data & 0xFFFF
            if index in seen:
                raise UnresolvedResourceError(
                    "Reference cycle at string resource 0x{:04x}".format(index)
                )
            seen.add(index)
            entry = res_type[index]
        return None


class ResTableHeader:
    """
    `ResTable_header`: the number of packages in the table
    """

    def __init__(self, cursor: ByteCursor, header: ARSCHeader) -> None:
        self.header = header
        self.package_count = cursor.u32_at(header.start + 8)


class ResourceTable:
    """
    Parser for `resources.arsc` files.

    The chunks of the table are read in order: the table header, the global
    string pool and the packages. Lookups are answered by the first package.

    See http://androidxref.com/9.0.0_r3/xref/frameworks/base/libs/androidfw/include/androidfw/ResourceTypes.h#1341
    """

    def __init__(self, raw_buff: Buffer, log=None) -> None:
        self.log = log or logger
        self.cursor = ByteCursor(raw_buff)
        self.header: Optional[ResTableHeader] = None
        self.string_pool: Optional[StringBlock] = None
        self.packages: Dict[str, ResTablePackage] = {}

        decoders = {
            RES_TABLE_TYPE: self._parse_table_header,
            RES_STRING_POOL_TYPE: self._parse_string_pool,
            RES_TABLE_PACKAGE_TYPE: self._parse_package,
        }
        offset = 0
        while offset < len(self.cursor):
            self.log.debug("[0x{:08x}]", offset)
            offset = dispatch(self.cursor, offset, decoders)

    def _parse_table_header(self, offset: int) -> int:
        h = ARSCHeader(self.cursor, offset, log=self.log)
        self.header = ResTableHeader(self.cursor, h)
        self.log.debug("RES_TABLE_TYPE packages={}", self.header.package_count)
        # the header chunk encloses everything else
        return offset + h.header_size

    def _parse_string_pool(self, offset: int) -> int:
        self.string_pool = StringBlock.decode(self.cursor, offset, log=self.log)
        self.log.debug("RES_STRING_POOL_TYPE {}", self.string_pool)
        return self.string_pool.header.end

    def _parse_package(self, offset: int) -> int:
        if self.string_pool is None:
            raise MalformedChunkError(
                "Package at 0x{:08x} precedes the global string pool".format(offset)
            )
        h = ARSCHeader(self.cursor, offset, log=self.log)
        package = ResTablePackage(self.cursor, h, self.string_pool, log=self.log)
        self.packages[package.name] = package
        self.log.debug("RES_TABLE_PACKAGE_TYPE {}", package)
        return h.end

    @property
    def strings(self) -> List[str]:
        """All strings defined in arsc"""
        if self.string_pool is None:
            return []
        return self.string_pool.strings

    @property
    def package_count(self) -> int:
        if self.header is None:
            return len(self.packages)
        return self.header.package_count

    @property
    def first_package(self) -> ResTablePackage:
        if not self.packages:
            raise UnresolvedResourceError("Resource table has no package")
        return next(iter(self.packages.values()))

    def find(self, res_id: Union[str, int], lang: Optional[str] = None, country: Optional[str] = None):
        """
        See [ResTablePackage.find][apkres.arsc.ResTablePackage.find]
        """
        return self.first_package.find(res_id, lang=lang, country=country)

    def readable_id(self, hex_id: Union[str, int]) -> str:
        return self.first_package.readable_id(hex_id)

    def hex_id(self, readable_id: str) -> str:
        return self.first_package.hex_id(readable_id)
