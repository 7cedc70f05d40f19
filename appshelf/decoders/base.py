"""Decoder result types and the decoder protocol."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from contextlib import AbstractContextManager
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict


class DecodeError(RuntimeError):
    """Decoding failed. ``step`` names the stage that failed."""

    def __init__(self, step: str, message: str) -> None:
        super().__init__(message)
        self.step = step


class IconCandidate(BaseModel):
    """A raster image found inside a package. ``name`` is its path there."""

    model_config = ConfigDict(frozen=True)

    name: str
    data: bytes


class DecodedPackage(BaseModel):
    """Metadata of one package plus its icon candidates.

    ``icons`` is single-pass and only valid inside the decode context that
    produced it.
    """

    model_config = ConfigDict(frozen=True)

    version: str = ""
    # Android
    package: str = ""
    sha256_cert_fingerprints: str = ""
    # Apple
    bundle_name: str = ""
    bundle_identifier: str = ""

    icons: Iterable[IconCandidate] = ()


class Decoder(Protocol):
    def decode(
        self, path: Path, cancel: threading.Event
    ) -> AbstractContextManager[DecodedPackage]: ...
