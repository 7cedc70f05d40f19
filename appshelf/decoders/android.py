"""Android package decoder.

Delegates to two external tools:

- ``apktool decode --force --no-src --output <dir> <apk>`` unpacks resources
  and the binary manifest into plain files.
- ``keytool -printcert -jarfile <apk>`` reports the signing certificate.

The unpacked tree lives in a temporary directory that is removed when the
``decode`` context exits; icon candidates are read from it lazily.
"""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
import threading
import time
import xml.etree.ElementTree as ET
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import yaml

from appshelf.core.errors import ReconcileCancelled
from appshelf.decoders.base import DecodedPackage, DecodeError, IconCandidate
from appshelf.decoders.version import canonical

logger = logging.getLogger(__name__)

ANDROID_NS = "http://schemas.android.com/apk/res/android"
MANIFEST_NAME = "AndroidManifest.xml"
METADATA_NAME = "apktool.yml"

STEP_DECODE = "Decode"
STEP_MANIFEST = "Manifest"
STEP_METADATA = "Metadata"
STEP_FINGERPRINT = "Fingerprint"

_ICON_EXTENSIONS = frozenset({".png", ".jpg", ".jpeg", ".webp"})
_DEFAULT_ICON = ("drawable", "ic_launcher")


class _ApktoolLoader(yaml.SafeLoader):
    """SafeLoader that treats application tags as plain nodes.

    ``apktool.yml`` opens with ``!!brut.androlib.meta.MetaInfo``.
    """


def _construct_tagged(loader: yaml.SafeLoader, suffix: str, node: yaml.Node) -> Any:
    if isinstance(node, yaml.MappingNode):
        return loader.construct_mapping(node, deep=True)
    if isinstance(node, yaml.SequenceNode):
        return loader.construct_sequence(node, deep=True)
    return loader.construct_scalar(node)


_ApktoolLoader.add_multi_constructor("tag:yaml.org,2002:brut", _construct_tagged)
_ApktoolLoader.add_multi_constructor("!", _construct_tagged)


def parse_icon_reference(value: str) -> tuple[str, str]:
    """Split ``@mipmap/ic_launcher`` into ``("mipmap", "ic_launcher")``."""
    value = value.lstrip("@")
    kind, sep, name = value.rpartition("/")
    if not sep or not name:
        return _DEFAULT_ICON
    return kind or _DEFAULT_ICON[0], name


def parse_manifest(path: Path) -> tuple[str, list[tuple[str, str]]]:
    """Return the package name and the declared launcher icon references."""
    try:
        root = ET.parse(path).getroot()
    except (OSError, ET.ParseError) as exc:
        raise DecodeError(STEP_MANIFEST, f"cannot read {MANIFEST_NAME}: {exc}") from exc

    package = root.get("package", "")
    icons: list[tuple[str, str]] = []
    application = root.find("application")
    if application is not None:
        for attr in ("icon", "roundIcon"):
            value = application.get(f"{{{ANDROID_NS}}}{attr}")
            if value:
                ref = parse_icon_reference(value)
                if ref not in icons:
                    icons.append(ref)
    if not icons:
        icons.append(_DEFAULT_ICON)
    return package, icons


def parse_metadata(path: Path) -> str:
    """Canonical version from ``apktool.yml``.

    Prefers ``versionInfo.versionName``, then ``version``, then
    ``versionInfo.versionCode``.
    """
    try:
        with open(path, encoding="utf-8") as fh:
            data = yaml.load(fh, Loader=_ApktoolLoader) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise DecodeError(STEP_METADATA, f"cannot read {METADATA_NAME}: {exc}") from exc
    if not isinstance(data, dict):
        raise DecodeError(STEP_METADATA, f"{METADATA_NAME} is not a mapping")

    version_info = data.get("versionInfo") or {}
    if not isinstance(version_info, dict):
        raise DecodeError(STEP_METADATA, f"{METADATA_NAME}: versionInfo is not a mapping")
    for candidate in (
        version_info.get("versionName"),
        data.get("version"),
        version_info.get("versionCode"),
    ):
        if candidate not in (None, ""):
            return canonical(str(candidate))
    return ""


def parse_fingerprint(output: str) -> str:
    """First ``SHA256:`` fingerprint in ``keytool -printcert`` output."""
    for line in output.splitlines():
        if "SHA256: " in line:
            fields = line.split()
            if len(fields) >= 2:
                return fields[1]
    raise DecodeError(STEP_FINGERPRINT, "sha256 certificate fingerprint not found")


def iter_icons(root: Path, icons: list[tuple[str, str]]) -> Iterator[IconCandidate]:
    """Raster files whose stem is a declared icon name under a matching
    resource directory, in sorted path order."""
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        for filename in sorted(filenames):
            stem, ext = os.path.splitext(filename)
            if ext.lower() not in _ICON_EXTENSIONS:
                continue
            if not any(stem == name and kind in rel_dir for kind, name in icons):
                continue
            path = Path(dirpath) / filename
            yield IconCandidate(name=f"{rel_dir}/{filename}", data=path.read_bytes())


class AndroidDecoder:
    """Decodes ``.apk`` files with apktool and keytool.

    Parameters
    ----------
    apktool, keytool:
        Executables to run.
    timeout:
        Upper bound in seconds for each tool invocation.
    scratch_dir:
        Parent directory for the unpacked tree; system temp when None.
    """

    def __init__(
        self,
        apktool: str = "apktool",
        keytool: str = "keytool",
        timeout: float = 300.0,
        scratch_dir: Path | None = None,
    ) -> None:
        self.apktool = apktool
        self.keytool = keytool
        self.timeout = timeout
        self.scratch_dir = scratch_dir

    def _run(self, args: list[str], step: str, cancel: threading.Event) -> str:
        """Run a tool, terminating it if ``cancel`` fires or time runs out."""
        logger.debug("running %s", " ".join(args))
        try:
            proc = subprocess.Popen(
                args, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True
            )
        except OSError as exc:
            raise DecodeError(step, f"cannot run {args[0]}: {exc}") from exc

        deadline = time.monotonic() + self.timeout
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=0.2)
                break
            except subprocess.TimeoutExpired:
                if cancel.is_set():
                    proc.kill()
                    proc.communicate()
                    raise ReconcileCancelled(f"{args[0]} cancelled")
                if time.monotonic() > deadline:
                    proc.kill()
                    proc.communicate()
                    raise DecodeError(step, f"{args[0]} timed out after {self.timeout:.0f}s")

        if proc.returncode != 0:
            detail = (stderr or stdout).strip().splitlines()
            raise DecodeError(
                step,
                f"{args[0]} exited {proc.returncode}" + (f": {detail[-1]}" if detail else ""),
            )
        return stdout

    @contextmanager
    def decode(self, path: Path, cancel: threading.Event) -> Iterator[DecodedPackage]:
        with tempfile.TemporaryDirectory(prefix="apk-", dir=self.scratch_dir) as tmp:
            out = Path(tmp) / "decoded"
            self._run(
                [self.apktool, "decode", "--force", "--no-src", "--output", str(out), str(path)],
                STEP_DECODE,
                cancel,
            )
            package, icon_refs = parse_manifest(out / MANIFEST_NAME)
            version = parse_metadata(out / METADATA_NAME)
            fingerprint = parse_fingerprint(
                self._run(
                    [self.keytool, "-printcert", "-jarfile", str(path)],
                    STEP_FINGERPRINT,
                    cancel,
                )
            )
            logger.debug("decoded %s: package=%s version=%s", path.name, package, version)
            yield DecodedPackage(
                version=version,
                package=package,
                sha256_cert_fingerprints=fingerprint,
                icons=iter_icons(out, icon_refs),
            )
