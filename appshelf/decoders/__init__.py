"""Package format decoders.

A decoder turns a local package file into a ``DecodedPackage``: the
identifying metadata plus every raster image that may be the app icon.
"""

from appshelf.decoders.android import AndroidDecoder
from appshelf.decoders.apple import AppleDecoder
from appshelf.decoders.base import DecodedPackage, DecodeError, Decoder, IconCandidate

__all__ = [
    "DecodeError",
    "DecodedPackage",
    "Decoder",
    "IconCandidate",
    "AndroidDecoder",
    "AppleDecoder",
]
