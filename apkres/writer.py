from typing import List, NamedTuple, Optional

from .axml import AXMLParser, XmlElement, find_path
from .cursor import Buffer
from .errors import UnresolvedResourceError
from .values import AttributeValue

METADATA_PATH = "/manifest/application/meta-data"

# Absolute offset of the document size inside the RES_XML_TYPE header
XML_SIZE_OFFSET = 4


class AttributeRecord(NamedTuple):
    """
    Where the value of one attribute lives in the buffer.

    `string_field` is the absolute offset of the value string index word,
    `data_field` the one of the raw value word.
    """

    element: XmlElement
    name: str
    value: AttributeValue
    is_string: bool
    string_field: int
    data_field: int

    def shifted(self, count: int) -> "AttributeRecord":
        return self._replace(
            string_field=self.string_field + count,
            data_field=self.data_field + count,
        )


class AXMLWriter(AXMLParser):
    """
    Modify attribute values of a binary xml in place.

    The writer keeps its own copy of the data. Integer typed values are
    overwritten directly; string typed values get a new string appended to the
    header string pool, which moves every byte behind the pool. The recorded
    attribute positions are shifted accordingly, so several values can be
    modified one after the other. The result of
    [get_bytes][apkres.writer.AXMLWriter.get_bytes] can be parsed again.
    """

    def __init__(self, raw_buff: Buffer, log=None) -> None:
        super().__init__(bytearray(raw_buff), log=log)
        self.records: List[AttributeRecord] = []
        self.parse()

    def parse(self):
        document = super().parse()
        self.records = [
            AttributeRecord(
                elem,
                attribute.name,
                attribute.value,
                attribute.raw.is_string,
                attribute.string_field,
                attribute.data_field,
            )
            for elem in document.iter()
            for attribute in elem.attributes
            if attribute.offset is not None
        ]
        return document

    def get_bytes(self) -> bytes:
        return bytes(self.buff)

    def modify_metadata(self, name: str, new_value) -> None:
        """
        Change the `android:value` of the `<meta-data>` element of the
        application whose `android:name` is `name`
        """
        self.modify_named_value(
            METADATA_PATH, "android:value", new_value, where={"android:name": name}
        )

    def modify_named_value(
        self,
        path: str,
        attribute: str,
        new_value,
        where: Optional[dict] = None,
    ) -> None:
        """
        Change the value of `attribute` on the first element at `path` whose
        attributes match every pair of `where`.

        :param path: slash separated element path, e.g. `/manifest/application`
        :param attribute: qualified attribute name, e.g. `android:value`
        :param new_value: a `str` for string typed attributes, an `int` (or
            `bool`) for every other type
        :raises UnresolvedResourceError: if the element or attribute does not exist
        :raises TypeError: if the value does not fit the attribute type
        """
        record = self._find_record(path, attribute, where or {})

        if record.is_string:
            if not isinstance(new_value, str):
                raise TypeError(
                    "{} holds a string, got {!r}".format(attribute, new_value)
                )
            string_id = self.add_string(new_value)
            # fetch the record again, add_string moved it
            record = self._find_record(path, attribute, where or {})
            self.cursor.write_u32(record.string_field, string_id)
            self.cursor.write_u32(record.data_field, string_id)
        else:
            if isinstance(new_value, bool):
                new_value = 0xFFFFFFFF if new_value else 0
            if not isinstance(new_value, int):
                raise TypeError(
                    "{} holds an integer, got {!r}".format(attribute, new_value)
                )
            self.cursor.write_u32(record.data_field, new_value)

        self.log.debug("{} of {} set to {!r}", attribute, path, new_value)
        self._update_record(record, new_value)

    def add_string(self, text: str) -> int:
        """
        Append `text` to the string pool

        The document size and all recorded attribute positions behind the
        string pool are updated.

        :returns: the index of the new string
        """
        pool_end = self.string_block.header.end
        string_id, bytes_added = self.string_block.add_string(text)

        self.cursor.write_u32(
            XML_SIZE_OFFSET, self.cursor.u32_at(XML_SIZE_OFFSET) + bytes_added
        )

        self.records = [
            record.shifted(bytes_added) if record.string_field >= pool_end else record
            for record in self.records
        ]
        return string_id

    def _find_record(self, path: str, attribute: str, where: dict) -> AttributeRecord:
        for elem in find_path(self.document.elements, path):
            records = {
                record.name: record for record in self.records if record.element is elem
            }
            if all(
                key in records and records[key].value == value for key, value in where.items()
            ):
                if attribute in records:
                    return records[attribute]
                raise UnresolvedResourceError(
                    "Attribute {} not found on {}".format(attribute, path)
                )
        raise UnresolvedResourceError(
            "No element {} matching {} could be found and modified".format(path, where)
        )

    def _update_record(self, record: AttributeRecord, new_value) -> None:
        self.records = [
            current._replace(value=new_value) if current is record else current
            for current in self.records
        ]
