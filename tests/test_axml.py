from struct import pack

import pytest

from apkres.axml import (
    TAG_CDSECT,
    TAG_ENTITY_REF,
    AXMLParser,
    Namespace,
    XmlText,
    is_axml,
)
from apkres.errors import (
    MalformedChunkError,
    UnresolvedNamespaceError,
    UnsupportedConstructError,
)
from apkres.internal_types import (
    TYPE_FLOAT,
    TYPE_INT_BOOLEAN,
    TYPE_INT_HEX,
    TYPE_NULL,
    TYPE_REFERENCE,
)

from builders import ANDROID_NS, AXMLBuilder, attr, manifest, sample_table

GOLDEN_MANIFEST = (
    b'<manifest xmlns:android="http://schemas.android.com/apk/res/android"'
    b' package="com.example.app" android:versionCode="7">'
    b'<uses-permission android:name="android.permission.INTERNET"/>'
    b'<uses-permission android:name="android.permission.CAMERA"/>'
    b'</manifest>'
)


def document(build):
    """Wrap the events written by `build` into an android namespace"""
    b = AXMLBuilder()
    b.start_namespace("android", ANDROID_NS)
    build(b)
    b.end_namespace("android", ANDROID_NS)
    return AXMLParser(b.build()).parse()


def test_is_axml(manifest_bytes):
    assert is_axml(manifest_bytes)
    assert not is_axml(sample_table())


def test_manifest(manifest_bytes):
    parser = AXMLParser(manifest_bytes)
    doc = parser.parse()

    assert doc.root.name == "manifest"
    assert doc.root.attrib == {
        "xmlns:android": ANDROID_NS,
        "package": "com.example.app",
        "android:versionCode": 7,
    }
    permissions = doc.findall("/manifest/uses-permission")
    assert [p.get("android:name") for p in permissions] == [
        "android.permission.INTERNET",
        "android.permission.CAMERA",
    ]
    assert "com.example.app" in parser.strings
    assert not parser.axml_tampered


def test_attribute_offsets(manifest_bytes):
    doc = AXMLParser(manifest_bytes).parse()
    synthesized, package, version = doc.root.attributes
    assert synthesized.offset is None
    assert version.offset == package.offset + 20
    assert version.raw.data == 7


def test_golden_xml(manifest_bytes):
    doc = AXMLParser(manifest_bytes).parse()
    assert doc.get_xml(pretty=False) == GOLDEN_MANIFEST


def test_pretty_xml(manifest_bytes):
    xml = AXMLParser(manifest_bytes).parse().get_xml()
    assert xml.endswith(b"</manifest>\n")
    assert b"\n  <uses-permission" in xml


def test_xpath(manifest_bytes):
    doc = AXMLParser(manifest_bytes).parse()
    assert doc.xpath("/manifest/uses-permission/@android:name") == [
        "android.permission.INTERNET",
        "android.permission.CAMERA",
    ]


def test_parse_is_idempotent(manifest_bytes):
    first = AXMLParser(manifest_bytes).parse()
    second = AXMLParser(manifest_bytes).parse()
    assert first == second
    assert first.get_xml() == second.get_xml()


def test_boolean_values():
    def build(b):
        b.start(
            "root",
            [
                attr("b1", value_type=TYPE_INT_BOOLEAN, data=1),
                attr("b2", value_type=TYPE_INT_BOOLEAN, data=0xFFFFFFFF),
                attr("b3", value_type=TYPE_INT_BOOLEAN, data=0),
                attr("b4", value_type=TYPE_INT_BOOLEAN, data=2),
            ],
        )
        b.end("root")

    doc = document(build)
    root = doc.root
    assert [root.get("android:b%d" % i) for i in range(1, 5)] == [True, True, False, False]
    xml = doc.get_xml(pretty=False)
    assert b'android:b1="true"' in xml
    assert b'android:b4="false"' in xml


def test_other_values():
    def build(b):
        b.start(
            "root",
            [
                attr("ref", value_type=TYPE_REFERENCE, data=0x7F040001),
                attr("hex", value_type=TYPE_INT_HEX, data=16),
                attr("none", value_type=TYPE_NULL, data=0),
                attr("float", value_type=TYPE_FLOAT, data=0x3F800000),
            ],
        )
        b.end("root")

    doc = document(build)
    assert doc.root.attrib == {
        "xmlns:android": ANDROID_NS,
        "android:ref": "@0x7f040001",
        "android:hex": "0x10",
        "android:none": None,
        "android:float": "[0x3f800000, flag=0x4000008]",
    }
    assert b"android:none" not in doc.get_xml()


def test_namespaced_element():
    def build(b):
        b.start("root")
        b.start("item", ns=ANDROID_NS)
        b.end("item", ns=ANDROID_NS)
        b.end("root")

    doc = document(build)
    assert doc.root.elements[0].name == "android:item"
    assert doc.findall("/root/android:item")
    assert doc.findall("/*/*")[0].name == "android:item"


def test_transitive_namespace():
    b = AXMLBuilder()
    b.start_namespace("android", ANDROID_NS)
    b.start_namespace("n0", "android")
    b.start("root", [attr("label", ns="n0", string="x")])
    b.end("root")
    b.end_namespace("n0", "android")
    b.end_namespace("android", ANDROID_NS)
    parser = AXMLParser(b.build())
    root = parser.parse().root

    assert root.get("android:label") == "x"
    # only the innermost declaration is attached to the element
    assert root.namespaces == {"n0": "android"}


def test_resolve_prefix():
    parser = AXMLParser(manifest())
    parser.namespaces = [
        Namespace("android", ANDROID_NS, 1),
        Namespace("n0", "android", 1),
        Namespace("n1", "n0", 2),
    ]
    assert parser.resolve_prefix(ANDROID_NS) == "android"
    assert parser.resolve_prefix("n1") == "android"
    with pytest.raises(UnresolvedNamespaceError):
        parser.resolve_prefix("http://example.com/unknown")


def test_unresolved_namespace():
    def build(b):
        b.start("root", [attr("x", ns="http://example.com/unknown", string="y")])
        b.end("root")

    with pytest.raises(UnresolvedNamespaceError):
        document(build)


def test_text():
    def build(b):
        b.text("dropped")
        b.start("root")
        b.text("hello")
        b.start("child")
        b.end("child")
        b.text(" tail")
        b.end("root")

    doc = document(build)
    assert len(doc.children) == 1
    root = doc.root
    # a later text event replaces the text of the element
    assert root.text == " tail"
    assert isinstance(root.children[0], XmlText)
    assert len(root.children) == 2
    assert doc.get_xml(pretty=False).endswith(b"> tail<child/></root>")


def test_text_setter():
    doc = AXMLParser(manifest()).parse()
    root = doc.root
    assert root.text is None
    root.text = "a"
    root.text = "b"
    assert [c.value for c in root.children if isinstance(c, XmlText)] == ["b"]


def test_sanitized_values():
    def build(b):
        b.start("root", [attr("label", string="bad\x01value")])
        b.end("root")

    assert document(build).root.get("android:label") == "badvalue"


def test_duplicate_attribute():
    def build(b):
        b.start("root", [attr("a", string="first"), attr("a", string="second")])
        b.end("root")

    root = document(build).root
    assert root.get("android:a") == "second"
    assert len(root.attributes) == 2


@pytest.mark.parametrize("tag", [TAG_CDSECT, TAG_ENTITY_REF])
def test_unsupported_constructs(tag):
    def build(b):
        b.start("root")
        b.raw_node(tag)
        b.end("root")

    with pytest.raises(UnsupportedConstructError):
        document(build)


def test_unknown_tag():
    def build(b):
        b.start("root")
        b.raw_node(0x00100107)
        b.end("root")

    with pytest.raises(MalformedChunkError):
        document(build)


def test_resource_map():
    b = AXMLBuilder(resource_ids=[0x01010003, 0x0101021B])
    b.start_namespace("android", ANDROID_NS)
    b.start("root", [attr("name", string="n")])
    b.end("root")
    b.end_namespace("android", ANDROID_NS)
    parser = AXMLParser(b.build())

    assert parser.parse().root.get("android:name") == "n"
    assert parser.resource_ids == [0x01010003, 0x0101021B]


def test_no_start_namespace():
    b = AXMLBuilder()
    b.start("root")
    b.end("root")
    with pytest.raises(MalformedChunkError):
        AXMLParser(b.build()).parse()


def test_plain_xml_rejected():
    with pytest.raises(MalformedChunkError):
        AXMLParser(b'<?xml version="1.0"?><manifest/>').parse()


def test_appended_data(manifest_bytes):
    parser = AXMLParser(manifest_bytes + b"\x00" * 8)
    assert parser.parse().root.name == "manifest"
    assert parser.axml_tampered


def test_unusual_resource_type(manifest_bytes):
    data = b"\x00\x00" + manifest_bytes[2:]
    parser = AXMLParser(data)
    assert parser.parse() == AXMLParser(manifest_bytes).parse()
    assert parser.axml_tampered


def test_no_root_element():
    b = AXMLBuilder()
    b.start_namespace("android", ANDROID_NS)
    b.end_namespace("android", ANDROID_NS)
    doc = AXMLParser(b.build()).parse()
    assert doc.root is None
    with pytest.raises(MalformedChunkError):
        doc.get_xml()


def test_padding_before_first_event():
    b = AXMLBuilder(resource_ids=[0x01010003])
    b.start_namespace("android", ANDROID_NS)
    b.start("root", [attr("name", string="n")])
    b.end("root")
    b.end_namespace("android", ANDROID_NS)
    # a RES_NULL chunk with some payload
    padding = pack('<HHL', 0x0000, 8, 16) + b"\x00" * 8
    parser = AXMLParser(b.build(padding=padding))

    assert parser.parse().root.get("android:name") == "n"
    assert parser.resource_ids == [0x01010003]


def test_events_after_last_namespace_are_ignored():
    b = AXMLBuilder()
    b.start_namespace("android", ANDROID_NS)
    b.start("root")
    b.end("root")
    b.end_namespace("android", ANDROID_NS)
    b.start("trailing")
    b.end("trailing")
    # would raise if it was decoded
    b.raw_node(0x00100107)
    doc = AXMLParser(b.build()).parse()

    assert [e.name for e in doc.elements] == ["root"]
    assert list(doc.iter("trailing")) == []


def test_invalid_namespace_uri():
    b = AXMLBuilder()
    b.start_namespace("android", ANDROID_NS)
    b.start_namespace("x", "not a uri")
    b.start("root", [attr("label", ns="not a uri", string="y")])
    b.end("root")
    b.end_namespace("x", "not a uri")
    b.end_namespace("android", ANDROID_NS)
    doc = AXMLParser(b.build()).parse()

    assert doc.root.get("x:label") == "y"
    assert doc.get_xml(pretty=False) == b'<root x_label="y"/>'
    assert doc.xpath("/root/@x_label") == ["y"]
