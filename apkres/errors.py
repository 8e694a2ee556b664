class ResParserError(Exception):
    """Exception for the parsers"""

    pass


class MalformedChunkError(ResParserError):
    """A chunk header is truncated, inconsistent or of an unexpected type"""

    pass


class UnknownChunkTypeError(MalformedChunkError):
    """A resource table carries a chunk type this package does not decode"""

    pass


class OutOfBoundsError(ResParserError, IndexError):
    """A computed offset or length points past the end of the buffer"""

    pass


class UnsupportedConstructError(ResParserError, NotImplementedError):
    """CDATA sections, entity references and UTF-8 string pool appends"""

    pass


class UnresolvedNamespaceError(ResParserError, KeyError):
    """No open namespace binding matches a referenced URI or prefix"""

    pass


class UnresolvedResourceError(ResParserError, KeyError):
    """A resource id, symbolic name or patch target could not be found"""

    pass


class InvalidIdFormatError(ResParserError, ValueError):
    """A resource id is neither `@0xPPTTKKKK` nor `@type/key`"""

    pass

