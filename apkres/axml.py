import re
from typing import Iterator, List, NamedTuple, Optional, Union

from loguru import logger
from lxml import etree

from .chunk import (
    ARSCHeader,
    RES_XML_RESOURCE_MAP_TYPE,
    RES_XML_TYPE,
    peek_type,
)
from .cursor import Buffer, ByteCursor
from .errors import (
    MalformedChunkError,
    UnresolvedNamespaceError,
    UnsupportedConstructError,
)
from .internal_types import NO_INDEX
from .stringblock import StringBlock
from .values import AttributeValue, TypedValue, convert_value

AXML_MAGIC = b"\x03\x00\x08\x00"

# Chunk type and header size of the XML tree chunks, read as one word
TAG_START_NAMESPACE = 0x00100100
TAG_END_NAMESPACE = 0x00100101
TAG_START = 0x00100102
TAG_END = 0x00100103
TAG_TEXT = 0x00100104
TAG_CDSECT = 0x00100105
TAG_ENTITY_REF = 0x00100106

# tag, chunk size, line number, comment, namespace/data, name
NODE_HEADER_WORDS = 6
# Each attribute has 5 fields of 4 byte
ATTRIBUTE_LENGTH = 5
ATTRIBUTE_SIZE = ATTRIBUTE_LENGTH * 4
# Position of the fields inside an attribute record
ATTRIBUTE_IX_VALUE_STRING = 2
ATTRIBUTE_IX_VALUE_DATA = 4

# Char ::= #x9 | #xA | #xD | [#x20-#xD7FF] | [#xE000-#xFFFD] | [#x10000-#x10FFFF]
# See <https://www.w3.org/TR/xml/#charsets>
INVALID_XML_CHARS = re.compile(
    '[^\u0020-\uD7FF\u0009\u000A\u000D\uE000-\uFFFD\U00010000-\U0010FFFF]'
)
VALID_NAME = re.compile(r"^[a-zA-Z_][a-zA-Z0-9._-]*$")


def is_axml(data: Buffer) -> bool:
    """
    AXML files start with a RES_XML_TYPE chunk header of size 8
    """
    return bytes(data[0:4]) == AXML_MAGIC


def sanitize(value: str) -> str:
    """Drop characters that are not allowed in XML 1.0 documents"""
    return INVALID_XML_CHARS.sub('', value)


def valid_uri(uri: str) -> bool:
    """Whether lxml accepts `uri` as a namespace uri"""
    if not uri:
        return False
    try:
        etree.Element("ns", nsmap={"ns": uri})
    except ValueError:
        return False
    return True


class Namespace(NamedTuple):
    prefix: str
    uri: str
    nesting_level: int


class XmlAttribute(NamedTuple):
    """
    A decoded attribute.

    `offset` is the absolute position of the 20 byte attribute record inside
    the buffer it was decoded from, `None` for namespace declarations which
    are synthesized from namespace chunks.
    """

    name: str
    value: AttributeValue
    raw: Optional[TypedValue] = None
    offset: Optional[int] = None

    @property
    def string_field(self) -> int:
        """Absolute offset of the value string index word"""
        return self.offset + ATTRIBUTE_IX_VALUE_STRING * 4

    @property
    def data_field(self) -> int:
        """Absolute offset of the raw value data word"""
        return self.offset + ATTRIBUTE_IX_VALUE_DATA * 4


class XmlText:
    def __init__(self, value: str) -> None:
        self.value = value

    def __eq__(self, other):
        return isinstance(other, XmlText) and other.value == self.value

    def __repr__(self):
        return "<XmlText {!r}>".format(self.value)


class XmlElement:
    """
    An element of a decoded AXML document.

    Names are qualified with the resolved namespace prefix (`android:name`),
    attribute values are python values as returned by
    [convert_value][apkres.values.convert_value].
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.attributes: List[XmlAttribute] = []
        self.children: List[Union["XmlElement", XmlText]] = []

    def __eq__(self, other):
        return (
            isinstance(other, XmlElement)
            and other.name == self.name
            and other.attributes == self.attributes
            and other.children == self.children
        )

    def __repr__(self):
        return "<XmlElement {} attributes={} children={}>".format(
            self.name, len(self.attributes), len(self.children)
        )

    def add_attribute(self, attribute: XmlAttribute, log=None) -> None:
        for i, existing in enumerate(self.attributes):
            if existing.name == attribute.name:
                (log or logger).warning(
                    "Duplicate attribute '{}'! Will overwrite!", attribute.name
                )
                self.attributes[i] = attribute
                return
        self.attributes.append(attribute)

    def attribute(self, name: str) -> Optional[XmlAttribute]:
        for attribute in self.attributes:
            if attribute.name == name:
                return attribute
        return None

    def get(self, name: str, default: AttributeValue = None) -> AttributeValue:
        attribute = self.attribute(name)
        if attribute is None:
            return default
        return attribute.value

    @property
    def attrib(self) -> dict:
        return {attribute.name: attribute.value for attribute in self.attributes}

    @property
    def namespaces(self) -> dict:
        """Namespace declarations carried by this element, prefix to uri"""
        return {
            attribute.name[len("xmlns:"):]: attribute.value
            for attribute in self.attributes
            if attribute.name.startswith("xmlns:")
        }

    @property
    def elements(self) -> List["XmlElement"]:
        return [child for child in self.children if isinstance(child, XmlElement)]

    @property
    def text(self) -> Optional[str]:
        for child in self.children:
            if isinstance(child, XmlText):
                return child.value
        return None

    @text.setter
    def text(self, value: str) -> None:
        for child in self.children:
            if isinstance(child, XmlText):
                child.value = value
                return
        self.children.append(XmlText(value))

    def iter(self, tag: Optional[str] = None) -> Iterator["XmlElement"]:
        if tag is None or self.name == tag:
            yield self
        for child in self.elements:
            yield from child.iter(tag)

    def findall(self, path: str) -> List["XmlElement"]:
        """
        Child elements matching a slash separated path relative to this element
        """
        return find_path(self.elements, path)


def find_path(nodes: List[XmlElement], path: str) -> List[XmlElement]:
    steps = [step for step in path.strip("/").split("/") if step]
    if not steps:
        return []
    found = [node for node in nodes if steps[0] in ("*", node.name)]
    for step in steps[1:]:
        found = [
            child for node in found for child in node.elements if step in ("*", child.name)
        ]
    return found


class XmlDocument:
    """
    Root of a decoded AXML document.

    The document itself is the bottom of the open element stack while
    decoding, so its `children` hold the top level element(s).
    """

    def __init__(self, nsmap: Optional[dict] = None, log=None) -> None:
        self.children: List[XmlElement] = []
        # every prefix seen while decoding, used to export names whose
        # declaration was not attached to an element
        self.nsmap = nsmap if nsmap is not None else {}
        self.log = log or logger

    def __eq__(self, other):
        return isinstance(other, XmlDocument) and other.children == self.children

    def __repr__(self):
        return "<XmlDocument root={!r}>".format(self.root)

    @property
    def root(self) -> Optional[XmlElement]:
        for child in self.children:
            if isinstance(child, XmlElement):
                return child
        return None

    @property
    def elements(self) -> List[XmlElement]:
        return [child for child in self.children if isinstance(child, XmlElement)]

    def iter(self, tag: Optional[str] = None) -> Iterator[XmlElement]:
        for child in self.elements:
            yield from child.iter(tag)

    def findall(self, path: str) -> List[XmlElement]:
        """
        Elements matching a slash separated path starting at the document,
        e.g. `/manifest/uses-permission`
        """
        return find_path(self.elements, path)

    def to_lxml(self) -> etree._Element:
        """
        Convert the document into a lxml ElementTree, which can easily be
        converted into XML.

        :raises MalformedChunkError: if the document has no root element
        """
        if self.root is None:
            raise MalformedChunkError("Document has no root element")
        return self._build(self.root, None, {})

    def get_xml(self, pretty: bool = True) -> bytes:
        """
        Get the XML as an UTF-8 string

        :returns: bytes encoded as UTF-8
        """
        return etree.tostring(self.to_lxml(), encoding="utf-8", pretty_print=pretty)

    def xpath(self, expression: str, namespaces: Optional[dict] = None) -> list:
        """
        Evaluate `expression` on the lxml export. Prefixes resolve through
        the namespaces seen while decoding unless `namespaces` is given.
        """
        if namespaces is None:
            namespaces = {
                prefix: uri
                for prefix, uri in self.nsmap.items()
                if VALID_NAME.match(prefix) and valid_uri(uri)
            }
        return self.to_lxml().xpath(expression, namespaces=namespaces)

    def _build(self, elem: XmlElement, parent, scope: dict):
        scope = dict(scope)
        nsmap = {}
        for prefix, uri in elem.namespaces.items():
            if not valid_uri(uri):
                # packers declare garbage uris, names using them are flattened
                self.log.warning(
                    "Invalid namespace uri '{}' for prefix '{}'.", uri, prefix
                )
                scope[prefix] = None
                continue
            scope[prefix] = uri
            # lxml refuses empty and malformed prefixes
            if VALID_NAME.match(prefix) and ":" not in prefix:
                nsmap[prefix] = uri

        tag = self._qualify(elem.name, scope)
        if parent is None:
            node = etree.Element(tag, nsmap=nsmap)
        else:
            node = etree.SubElement(parent, tag, nsmap=nsmap)

        for attribute in elem.attributes:
            if attribute.name.startswith("xmlns:") or attribute.value is None:
                continue
            node.set(self._qualify(attribute.name, scope), _format_attribute(attribute.value))

        for child in elem.children:
            if isinstance(child, XmlText):
                text = sanitize(child.value)
                if len(node):
                    node[-1].tail = (node[-1].tail or "") + text
                else:
                    node.text = (node.text or "") + text
            else:
                self._build(child, node, scope)
        return node

    def _qualify(self, name: str, scope: dict) -> str:
        """
        Turn a prefixed name into lxml's `{uri}name` notation.

        Names which are not valid XML names are fixed by replacing the invalid
        characters with underscores.
        """
        if ":" in name:
            prefix, local = name.split(":", 1)
            uri = scope[prefix] if prefix in scope else self.nsmap.get(prefix)
            if valid_uri(uri):
                return "{{{}}}{}".format(uri, self._fix_name(local))
            self.log.warning(
                "Confused: name contains a unknown namespace prefix: '{}'.", name
            )
        return self._fix_name(name)

    def _fix_name(self, name: str) -> str:
        if VALID_NAME.match(name):
            return name
        self.log.warning("Name '{}' contains invalid characters!", name)
        if not name or not (name[0].isalpha() or name[0] == "_"):
            name = "_{}".format(name)
        return re.sub(r"[^a-zA-Z0-9._-]", "_", name)


def _format_attribute(value: AttributeValue) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class AXMLParser:
    """
    `AXMLParser` reads through all chunks in the AXML file and builds an
    [XmlDocument][apkres.axml.XmlDocument] from the element events.

    An AXML file is a file which contains multiple chunks of data, defined
    by the `ResChunk_header`.
    There is no real file magic but as the size of the first header is fixed
    and the `type` of the `ResChunk_header` is set to `RES_XML_TYPE`, a file
    will usually start with `0x03000800`.
    But there are several examples where the `type` is set to something
    else, probably in order to fool parsers.

    The string pool follows the file header. The XML events are located by
    scanning for the first start-namespace chunk behind it, which skips the
    optional resource map and any padding chunks.

    See http://androidxref.com/9.0.0_r3/xref/frameworks/base/libs/androidfw/include/androidfw/ResourceTypes.h#563
    """

    def __init__(self, raw_buff: Buffer, log=None) -> None:
        """
        :param raw_buff: the AXML data, it is not modified by the parser
        :param log: loguru logger used for diagnostics, defaults to the package logger
        """
        self.log = log or logger
        self.buff = raw_buff if raw_buff is not None else b""
        self.cursor = ByteCursor(self.buff)
        self.axml_tampered = False
        self.string_block: Optional[StringBlock] = None
        self.document: Optional[XmlDocument] = None

        # Stores resource ID mappings, if any
        self.resource_ids: List[int] = []
        # Store a list of prefix/uri mappings encountered
        self.namespaces: List[Namespace] = []
        self._parents: list = []

    @property
    def strings(self) -> List[str]:
        """
        All strings of the header string pool, empty before parsing
        """
        if self.string_block is None:
            return []
        return self.string_block.strings

    def parse(self) -> XmlDocument:
        """
        Parse the binary xml

        :raises MalformedChunkError: for broken headers and unknown chunks
        :raises OutOfBoundsError: if data is read past the end of the buffer
        :raises UnsupportedConstructError: for CDATA sections and entity references
        :raises UnresolvedNamespaceError: if a namespace uri has no declaration
        :returns: the decoded document
        """
        axml_header = ARSCHeader(self.cursor, 0, log=self.log)
        self.log.debug("FIRST HEADER {}", axml_header)

        if axml_header.header_size == 28024:
            # Can be a common error: the file is not an AXML but a plain XML
            # The file will then usually start with '<?xm' / '3C 3F 78 6D'
            self.log.warning(
                "Header size is 28024! Are you trying to parse a plain XML file?"
            )

        if axml_header.header_size != ARSCHeader.SIZE:
            raise MalformedChunkError(
                "This does not look like an AXML file. header size does not equal 8! header size = {}".format(
                    axml_header.header_size
                )
            )

        if axml_header.size < len(self.buff):
            # The file can still be parsed up to the point where the chunk should end.
            self.axml_tampered = True
            self.log.warning(
                "Declared filesize ({}) is smaller than total file size ({}). "
                "Was something appended to the file? Trying to parse it anyways.",
                axml_header.size,
                len(self.buff),
            )

        # Not that severe of an error, we have plenty files where this is not
        # set correctly
        if axml_header.type != RES_XML_TYPE:
            self.axml_tampered = True
            self.log.warning(
                "AXML file has an unusual resource type! "
                "But we try to parse it anyways. Resource Type: 0x{:04x}",
                axml_header.type,
            )

        # Now we parse the STRING POOL
        self.string_block = StringBlock.decode(self.cursor, axml_header.header_size, log=self.log)
        pool_end = self.string_block.header.end

        self._parse_resource_map(pool_end)
        self._parse_tags(self._find_xml_start(pool_end), axml_header.end)
        return self.document

    def _parse_resource_map(self, offset: int) -> None:
        """
        Special chunk: Resource Map. This chunk might be contained inside
        the file, after the string pool.
        """
        self.resource_ids = []
        if offset + ARSCHeader.SIZE > len(self.buff):
            return
        if peek_type(self.cursor, offset) != RES_XML_RESOURCE_MAP_TYPE:
            return

        h = ARSCHeader(self.cursor, offset, log=self.log)
        self.log.debug("AXML contains a RESOURCE MAP")
        if (h.size % 4) != 0:
            self.log.warning("Invalid chunk size in chunk XML_RESOURCE_MAP")

        self.cursor.seek(h.start + h.header_size)
        for i in range((h.size - h.header_size) // 4):
            self.resource_ids.append(self.cursor.read_u32())
            self.log.debug("resource_ids[{}]: 0x{:08x}", i, self.resource_ids[i])

    def _find_xml_start(self, offset: int) -> int:
        # skip until first TAG_START_NAMESPACE
        pos = offset
        while pos + 4 <= len(self.buff):
            if self.cursor.u32_at(pos) == TAG_START_NAMESPACE:
                return pos
            pos += 4
        raise MalformedChunkError(
            "No start namespace chunk found behind offset 0x{:08x}".format(offset)
        )

    def _parse_tags(self, offset: int, end: int) -> None:
        cursor = self.cursor
        self.document = XmlDocument(log=self.log)
        self._parents = [self.document]
        self.namespaces = []

        cursor.seek(offset)
        while cursor.tell() < end:
            last_pos = cursor.tell()
            tag, size, line, _comment, ns_id, name_id = [
                cursor.read_u32() for _ in range(NODE_HEADER_WORDS)
            ]
            self.log.debug(
                "tag 0x{:08x} at 0x{:08x} (line={}, size={})", tag, last_pos, line, size
            )

            if tag == TAG_START:
                self._parse_start(ns_id, name_id)
            elif tag == TAG_END:
                if len(self._parents) > 1:
                    self._parents.pop()
                else:
                    self.log.error(
                        "Too many END_TAG! No more elements available to attach to!"
                    )
            elif tag == TAG_END_NAMESPACE:
                if self.namespaces:
                    self.namespaces.pop()
                else:
                    self.log.warning(
                        "Reached a NAMESPACE_END without having the namespace stored before?"
                    )
                # if the topmost namespace (usually 'android:') has been closed, we're done.
                if not self.namespaces:
                    break
            elif tag == TAG_TEXT:
                self._set_text(self.string_block[ns_id])
                cursor.skip(4)
            elif tag == TAG_START_NAMESPACE:
                prefix = self.string_block[ns_id]
                uri = self.string_block[name_id]
                self.log.debug(
                    "Start of Namespace mapping: prefix '{}' --> uri '{}'", prefix, uri
                )
                if uri == '':
                    self.log.warning(
                        "Namespace prefix '{}' resolves to empty URI. "
                        "This might be a packer.",
                        prefix,
                    )
                self.namespaces.append(Namespace(prefix, uri, self.current_nesting_level))
                self.document.nsmap.setdefault(prefix, uri)
            elif tag == TAG_CDSECT:
                raise UnsupportedConstructError("TAG_CDSECT not implemented")
            elif tag == TAG_ENTITY_REF:
                raise UnsupportedConstructError("TAG_ENTITY_REF not implemented")
            else:
                raise MalformedChunkError(
                    "pos={}(0x{:x})[tag:0x{:x}]".format(last_pos, last_pos, tag)
                )

            # honour the declared chunk size if it covers what we have read,
            # packers like to set it to zero
            consumed = cursor.tell() - last_pos
            if size != consumed:
                if consumed < size and last_pos + size <= end:
                    self.log.warning(
                        "Chunk at 0x{:08x} declares {} bytes, {} were read. Skipping the rest.",
                        last_pos,
                        size,
                        consumed,
                    )
                    cursor.seek(last_pos + size)
                else:
                    self.log.warning(
                        "Chunk at 0x{:08x} declares {} bytes, {} were read.",
                        last_pos,
                        size,
                        consumed,
                    )

        if self.namespaces:
            self.log.warning("Not all namespace mappings were closed! Malformed AXML?")

    def _parse_start(self, ns_id: int, name_id: int) -> None:
        cursor = self.cursor
        attribute_start_size, count_word, class_word = [
            cursor.read_u32() for _ in range(3)
        ]
        # low half: offset of the attributes, high half: size of one attribute
        attribute_size = attribute_start_size >> 16
        # high half of the count word is the index of the id attribute
        attribute_count = count_word & 0xFFFF
        self.log.debug(
            "START_TAG: attributeCount={} attributeSize={} classAttribute=0x{:x}",
            attribute_count,
            attribute_size,
            class_word,
        )

        prefix = ''
        if ns_id != NO_INDEX:
            prefix = self.resolve_prefix(self.string_block[ns_id]) + ':'
        elem = XmlElement(prefix + self.string_block[name_id])

        # If this element is a direct descendent of a namespace declaration
        # we add the namespace definition as an attribute.
        if self.namespaces and self.namespaces[-1].nesting_level == self.current_nesting_level:
            ns = self.namespaces[-1]
            elem.add_attribute(XmlAttribute("xmlns:" + ns.prefix, ns.uri), log=self.log)

        self._parents[-1].children.append(elem)

        stride = attribute_size if attribute_size >= ATTRIBUTE_SIZE else ATTRIBUTE_SIZE
        for _ in range(attribute_count):
            record = cursor.tell()
            elem.add_attribute(self._parse_attribute(record), log=self.log)
            cursor.seek(record + stride)

        self._parents.append(elem)

    def _parse_attribute(self, offset: int) -> XmlAttribute:
        """
        parse attribute of a element

        Each Attribute contains:
        * Namespace URI (String ID)
        * Name (String ID)
        * Value (String ID)
        * Type
        * Data
        """
        ns_id, name_id, val_str_id, flags, val = [
            self.cursor.read_u32() for _ in range(ATTRIBUTE_LENGTH)
        ]
        key = self.string_block[name_id]
        if ns_id != NO_INDEX:
            key = "{}:{}".format(self.resolve_prefix(self.string_block[ns_id]), key)

        value = self.convert_value(val_str_id, flags, val)
        if isinstance(value, str):
            # drop invalid chars that would be rejected by xml writers
            value = sanitize(value)
        self.log.debug("found an attribute: {}='{}'", key, value)
        return XmlAttribute(key, value, TypedValue(val_str_id, flags, val), offset)

    def _set_text(self, text: str) -> None:
        parent = self._parents[-1]
        if isinstance(parent, XmlDocument):
            self.log.warning("Text outside of the root element is dropped: {!r}", text)
            return
        self.log.debug("TEXT for {}", parent)
        parent.text = text

    def resolve_prefix(self, ns_uri: str) -> str:
        """
        find the declared namespace prefix for a URI

        A namespace might be given as a URI or as a reference to a previously
        defined namespace, e.g. like this:

            <tag1 xmlns:android="http://schemas.android.com/apk/res/android">
              <tag2 xmlns:n0="android" />
            </tag1>

        References are resolved transitively, innermost declaration first,
        before the prefix of the final URI is looked up.

        :raises UnresolvedNamespaceError: if no open namespace declares the URI
        """
        current_uri = ns_uri
        used = set()
        substituted = True
        while substituted:
            substituted = False
            for i in range(len(self.namespaces) - 1, -1, -1):
                ns = self.namespaces[i]
                if i not in used and ns.prefix == current_uri:
                    # we found a previous namespace declaration that was referenced to by
                    # the current_uri. Proceed with this namespace's URI
                    used.add(i)
                    current_uri = ns.uri
                    substituted = True
                    break

        for ns in reversed(self.namespaces):
            if ns.uri == current_uri:
                return ns.prefix
        raise UnresolvedNamespaceError(
            "Could not resolve URI {} to a namespace prefix".format(ns_uri)
        )

    @property
    def current_nesting_level(self) -> int:
        return len(self._parents)

    def convert_value(self, val_str_id: int, flags: int, val: int) -> AttributeValue:
        """
        Decode the value of an attribute, see [convert_value][apkres.values.convert_value]
        """
        return convert_value(val_str_id, flags, val, lambda idx: self.string_block[idx])
