"""Apple package decoder.

An ``.ipa`` is a zip archive holding ``Payload/<Name>.app/``. Metadata comes
from the bundle's ``Info.plist``; every raster image in the archive is an
icon candidate, in archive order.
"""

from __future__ import annotations

import logging
import plistlib
import posixpath
import threading
import zipfile
import zlib
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from xml.parsers.expat import ExpatError

from appshelf.core.errors import ReconcileCancelled
from appshelf.decoders.base import DecodedPackage, DecodeError, IconCandidate
from appshelf.decoders.version import canonical

logger = logging.getLogger(__name__)

INFO_PLIST_NAME = "info.plist"
STEP_INFO = "Info"
STEP_ICONS = "Icons"

_ICON_EXTENSIONS = frozenset({".png", ".jpg", ".jpeg"})

# What reading a damaged archive member can raise.
_READ_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError, KeyError, OSError)


def find_info_plist(names: list[str]) -> str | None:
    """Pick the bundle's Info.plist from a list of archive entry names.

    Prefers ``Payload/<Name>.app/Info.plist``; falls back to the first entry
    anywhere whose base name matches case-insensitively.
    """
    fallback = None
    for name in names:
        if posixpath.basename(name).lower() != INFO_PLIST_NAME:
            continue
        parts = name.split("/")
        if len(parts) == 3 and parts[0] == "Payload" and parts[1].endswith(".app"):
            return name
        if fallback is None:
            fallback = name
    return fallback


def read_info(archive: zipfile.ZipFile) -> dict:
    name = find_info_plist(archive.namelist())
    if name is None:
        raise DecodeError(STEP_INFO, "Info.plist not found in .ipa")
    try:
        info = plistlib.loads(archive.read(name))
    except (plistlib.InvalidFileException, ValueError, ExpatError, *_READ_ERRORS) as exc:
        raise DecodeError(STEP_INFO, f"cannot decode {name}: {exc}") from exc
    if not isinstance(info, dict):
        raise DecodeError(STEP_INFO, f"{name} is not a dictionary")
    return info


def iter_icons(archive: zipfile.ZipFile, cancel: threading.Event) -> Iterator[IconCandidate]:
    for entry in archive.infolist():
        if entry.is_dir():
            continue
        if posixpath.splitext(entry.filename)[1].lower() not in _ICON_EXTENSIONS:
            continue
        if cancel.is_set():
            raise ReconcileCancelled("icon enumeration cancelled")
        try:
            data = archive.read(entry)
        except _READ_ERRORS as exc:
            raise DecodeError(STEP_ICONS, f"cannot read {entry.filename}: {exc}") from exc
        yield IconCandidate(name=entry.filename, data=data)


class AppleDecoder:
    """Decodes ``.ipa`` files without extracting them to disk."""

    @contextmanager
    def decode(self, path: Path, cancel: threading.Event) -> Iterator[DecodedPackage]:
        try:
            archive = zipfile.ZipFile(path)
        except (zipfile.BadZipFile, OSError) as exc:
            raise DecodeError(STEP_INFO, f"cannot open .ipa: {exc}") from exc

        with archive:
            info = read_info(archive)
            version = canonical(
                str(
                    info.get("CFBundleShortVersionString")
                    or info.get("CFBundleVersion")
                    or ""
                )
            )
            decoded = DecodedPackage(
                version=version,
                bundle_identifier=str(info.get("CFBundleIdentifier", "")),
                bundle_name=str(info.get("CFBundleDisplayName") or info.get("CFBundleName") or ""),
                icons=iter_icons(archive, cancel),
            )
            logger.debug(
                "decoded %s: bundle=%s version=%s",
                path.name,
                decoded.bundle_identifier,
                decoded.version,
            )
            yield decoded
