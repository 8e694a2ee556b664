from loguru import logger

from apkres.axml import AXMLParser
from apkres.log import setup_logging

from builders import manifest


def test_disabled_by_default():
    messages = []
    handler_id = logger.add(messages.append, level="DEBUG")
    try:
        AXMLParser(manifest()).parse()
    finally:
        logger.remove(handler_id)
    assert messages == []


def test_setup_logging():
    messages = []
    handler_id = setup_logging(level="WARNING", sink=messages.append)
    try:
        AXMLParser(manifest() + b"\x00" * 8).parse()
    finally:
        logger.remove(handler_id)
        logger.disable("apkres")
    assert any("Declared filesize" in m for m in messages)
    assert not any("StringBlock" in m for m in messages)


def test_debug_messages(log_messages):
    AXMLParser(manifest()).parse()
    assert any(m.startswith("DEBUG:StringBlock") for m in log_messages)


def test_bound_logger(log_messages):
    AXMLParser(manifest(), log=logger.bind(apk="test.apk")).parse()
    assert any(m.record["extra"].get("apk") == "test.apk" for m in log_messages)
