from struct import pack

import pytest

from apkres.arsc import (
    ResourceTable,
    ResTableConfig,
    ResTableLibrary,
    ResTableMapEntry,
    is_arsc,
)
from apkres.cursor import ByteCursor
from apkres.errors import (
    InvalidIdFormatError,
    MalformedChunkError,
    UnknownChunkTypeError,
    UnresolvedResourceError,
)
from apkres.internal_types import TYPE_STRING

from builders import (
    GLOBAL_STRINGS,
    config,
    entry,
    map_entry,
    package,
    string_pool,
    table,
    table_type,
)


@pytest.fixture
def resources(table_bytes):
    return ResourceTable(table_bytes)


def test_is_arsc(table_bytes, manifest_bytes):
    assert is_arsc(table_bytes)
    assert not is_arsc(manifest_bytes)
    assert not is_arsc(b"\x02\x00")


def test_table(resources):
    assert resources.strings == GLOBAL_STRINGS
    assert resources.package_count == 1
    assert list(resources.packages) == ["com.example.app"]

    pkg = resources.packages["com.example.app"]
    assert pkg.id == 0x7F
    assert pkg.type_names == ["drawable", "string", "style"]
    assert len(pkg.types[2]) == 3
    assert [spec.entry_count for spec in pkg.specs[2]] == [5]
    assert pkg.libraries == [ResTableLibrary(0x02, "com.example.lib")]


@pytest.mark.parametrize(
    "res_id, options, expected",
    [
        ("@0x7f020000", {}, "Hello"),
        ("0x7f020000", {}, "Hello"),
        ("@string/app_name", {}, "Hello"),
        ("@0x7f020001", {}, "Hi there"),
        ("@0x7f020000", {"lang": "fr"}, "Bonjour"),
        ("@0x7f020000", {"lang": "de"}, "Guten Tag"),
        ("@0x7f020000", {"country": "DE"}, "Guten Tag"),
        ("@0x7f020000", {"lang": "fr", "country": "DE"}, "Guten Tag"),
        ("@0x7f020000", {"lang": "ja"}, "Hello"),
        # no french entry falls back, an empty german one is kept
        ("@0x7f020001", {"lang": "fr"}, "Hi there"),
        ("@0x7f020001", {"lang": "de"}, ""),
        ("@0x7f020001", {"country": "DE"}, ""),
        ("@string/alias", {}, "Hello"),
        ("@string/answer", {}, "42"),
    ],
)
def test_find_string(resources, res_id, options, expected):
    assert resources.find(res_id, **options) == expected


def test_find_unknown_string(resources):
    with pytest.raises(UnresolvedResourceError):
        resources.find("@0x7f020063")


def test_reference_cycle(resources):
    with pytest.raises(UnresolvedResourceError):
        resources.find("@string/loop")
    # the other strings stay readable
    assert resources.find("@string/app_name") == "Hello"


def test_find_drawable(resources):
    assert resources.find("@drawable/icon") == [
        "res/drawable/icon.png",
        "res/drawable-hdpi/icon.png",
    ]


def test_find_other_type(resources):
    assert resources.find("@0x7f030000") is None
    style = resources.first_package.types[3][0][0]
    assert isinstance(style, ResTableMapEntry)
    assert style.value is None
    assert style.parent == 0x01030005
    assert style.count == 1


@pytest.mark.parametrize("res_id", ["app_name", "@0x7f02", "@string/", "@0x7f02000g"])
def test_invalid_id(resources, res_id):
    with pytest.raises(InvalidIdFormatError):
        resources.find(res_id)


def test_readable_id(resources):
    assert resources.readable_id("@0x7f020002") == "@string/alias"
    assert resources.readable_id(0x7F030000) == "@style/AppTheme"
    with pytest.raises(UnresolvedResourceError):
        resources.readable_id("@0x7f020063")
    with pytest.raises(UnresolvedResourceError):
        resources.readable_id("@0x7f090000")


def test_hex_id(resources):
    assert resources.hex_id("@string/answer") == "@0x7f020003"
    assert resources.hex_id("@drawable/icon") == "@0x7f010000"
    with pytest.raises(UnresolvedResourceError):
        resources.hex_id("@string/unknown")
    with pytest.raises(UnresolvedResourceError):
        resources.hex_id("@color/app_name")


def test_unknown_type(resources):
    with pytest.raises(UnresolvedResourceError):
        resources.find("@0x7f090000")


def test_config_fields():
    cfg = ResTableConfig(ByteCursor(config(lang="en", country="US")), 0)
    assert cfg.size == 64
    assert (cfg.locale_lang, cfg.locale_country) == ("en", "US")
    assert not cfg.is_default


def test_short_config():
    cfg = ResTableConfig(ByteCursor(pack('<LL', 8, 310)), 0)
    assert cfg.imsi == 310
    assert cfg.locale_lang is None
    assert cfg.screen_type == 0
    assert cfg.is_default


def test_packed_locale():
    cfg = ResTableConfig(ByteCursor(config(lang=b"\xad\x05")), 0)
    assert cfg.locale_lang == "fil"


def test_sparse_type():
    data = table(
        ["first", "fourth"],
        [
            package(
                0x7F,
                "com.example.sparse",
                ["string"],
                ["first", "fourth"],
                [
                    table_type(
                        1,
                        [entry(0, TYPE_STRING, 0), None, None, entry(1, TYPE_STRING, 1)],
                        sparse=True,
                    )
                ],
            )
        ],
    )
    resources = ResourceTable(data)
    assert resources.find("@0x7f010003") == "fourth"
    assert resources.hex_id("@string/fourth") == "@0x7f010003"
    with pytest.raises(UnresolvedResourceError):
        resources.find("@0x7f010001")


def test_unknown_chunk_in_package():
    data = table(
        ["a"],
        [package(0x7F, "com.example.app", ["string"], ["a"], [pack('<HHL', 0x0207, 8, 8)])],
    )
    with pytest.raises(UnknownChunkTypeError):
        ResourceTable(data)


def test_unknown_top_level_chunk():
    data = table(["a"], [pack('<HHL', 0x0205, 8, 8)])
    with pytest.raises(UnknownChunkTypeError):
        ResourceTable(data)


def test_package_before_string_pool():
    pkg = package(0x7F, "com.example.app", ["string"], ["a"], [])
    data = pack('<HHL', 0x0002, 12, 12 + len(pkg)) + pack('<L', 1) + pkg
    with pytest.raises(MalformedChunkError):
        ResourceTable(data)


def test_table_without_header():
    resources = ResourceTable(string_pool(["only"], utf8=True))
    assert resources.strings == ["only"]
    assert resources.package_count == 0
    with pytest.raises(UnresolvedResourceError):
        resources.find("@0x7f010000")


def test_dotted_key():
    data = table(
        [],
        [
            package(
                0x7F,
                "com.example.themes",
                ["style"],
                ["Theme.App"],
                [table_type(1, [map_entry(0, parent=0x01030005)])],
            )
        ],
    )
    resources = ResourceTable(data)
    readable = resources.readable_id("@0x7f010000")
    assert readable == "@style/Theme.App"
    assert resources.hex_id(readable) == "@0x7f010000"
    assert resources.first_package.strid2int("style/Theme.App") == 0x7F010000
