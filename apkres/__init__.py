from loguru import logger

from .arsc import ResourceTable, ResTablePackage, is_arsc
from .axml import AXMLParser, XmlAttribute, XmlDocument, XmlElement, XmlText, is_axml
from .chunk import ARSCHeader
from .errors import (
    InvalidIdFormatError,
    MalformedChunkError,
    OutOfBoundsError,
    ResParserError,
    UnknownChunkTypeError,
    UnresolvedNamespaceError,
    UnresolvedResourceError,
    UnsupportedConstructError,
)
from .log import setup_logging
from .stringblock import StringBlock
from .writer import AXMLWriter

__version__ = "0.1.0"

logger.disable("apkres")
