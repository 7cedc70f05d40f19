"""Icon derivatives: normalise, publish and pick the best fit per role."""

from __future__ import annotations

import io
import logging
import posixpath
from collections.abc import Iterable, Sequence

from PIL import Image, UnidentifiedImageError

from appshelf.core.events import EventRecorder
from appshelf.core.storage import Store, StorageError
from appshelf.decoders.base import DecodeError, IconCandidate
from appshelf.models.artifacts import CONTENT_TYPE_PNG, IconEntry, IconOverrides
from appshelf.models.meta import Record

logger = logging.getLogger(__name__)

REASON_ICONS = "Icons"

# Modes PNG can hold as-is; anything else (CMYK, YCbCr, ...) becomes RGBA.
_PNG_MODES = frozenset({"1", "L", "LA", "I", "I;16", "P", "RGB", "RGBA"})

# What Pillow raises for unreadable, truncated or oversized images.
IMAGE_ERRORS = (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError)


class PublishError(RuntimeError):
    """Publishing stopped partway.

    ``published`` lists the derivatives already written to the store; the
    caller must keep track of them so they are deleted with the artifact.
    """

    def __init__(self, reason: str, message: str, published: list[IconEntry]) -> None:
        super().__init__(message)
        self.reason = reason
        self.published = published


def icon_key(spec_key: str, namespace: str, name: str, source: str, height: int, width: int) -> str:
    """``<dirname(spec_key)>/<namespace>/<name>/<stem>-<h>x<w>.png``."""
    stem = posixpath.splitext(posixpath.basename(source))[0].lower()
    return posixpath.join(
        posixpath.dirname(spec_key), namespace, name, f"{stem}-{height}x{width}.png"
    )


def encode_png(image: Image.Image) -> bytes:
    if image.mode not in _PNG_MODES:
        image = image.convert("RGBA")
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def publish_icons(
    candidates: Iterable[IconCandidate],
    store: Store,
    record: Record,
    spec_key: str,
    recorder: EventRecorder,
) -> list[IconEntry]:
    """Decode, filter and upload candidates in enumeration order.

    Undecodable candidates are skipped with a ``DecodeImage`` warning;
    non-square ones are dropped silently. A storage failure, or a decoder
    failure while enumerating, raises ``PublishError``.
    """
    entries: list[IconEntry] = []
    try:
        _publish_into(entries, candidates, store, record, spec_key, recorder)
    except DecodeError as exc:
        raise PublishError(exc.step, str(exc), entries) from exc
    except (StorageError, OSError) as exc:
        raise PublishError(REASON_ICONS, str(exc), entries) from exc
    return entries


def _publish_into(
    entries: list[IconEntry],
    candidates: Iterable[IconCandidate],
    store: Store,
    record: Record,
    spec_key: str,
    recorder: EventRecorder,
) -> None:
    seen: set[str] = set()
    for candidate in candidates:
        try:
            with Image.open(io.BytesIO(candidate.data)) as image:
                image.load()
                width, height = image.size
                if width != height:
                    logger.debug("skipping non-square icon %s (%dx%d)", candidate.name, width, height)
                    continue
                key = icon_key(
                    spec_key, record.metadata.namespace, record.metadata.name,
                    candidate.name, height, width,
                )
                if key in seen:
                    continue
                data = encode_png(image)
        except IMAGE_ERRORS as exc:
            recorder.warning(record, "DecodeImage", f"skipping {candidate.name}: {exc}")
            continue

        with store.open_writer(key, CONTENT_TYPE_PNG) as fh:
            fh.write(data)
        seen.add(key)
        entries.append(IconEntry(key=key, size=height))


def best_fit(entries: Sequence[IconEntry], target: int) -> int | None:
    """Index of the entry closest to ``target``; first seen wins ties."""
    best: int | None = None
    margin = 0
    for i, entry in enumerate(entries):
        m = abs(target - entry.size)
        if best is None or m < margin:
            best, margin = i, m
    return best


def assign_roles(
    entries: list[IconEntry],
    display_px: int,
    full_size_px: int,
    skip_display: bool = False,
    skip_full_size: bool = False,
) -> list[IconEntry]:
    """Return ``entries`` with the display and full-size flags set."""
    result = [e.model_copy(update={"display": False, "full_size": False}) for e in entries]
    if not skip_display:
        i = best_fit(result, display_px)
        if i is not None:
            result[i] = result[i].model_copy(update={"display": True})
    if not skip_full_size:
        i = best_fit(result, full_size_px)
        if i is not None:
            result[i] = result[i].model_copy(update={"full_size": True})
    return result


def _stored_size(store: Store, key: str) -> int:
    with store.open_reader(key) as fh:
        with Image.open(fh) as image:
            return image.size[1]


def override_entries(
    overrides: IconOverrides, store: Store, record: Record, recorder: EventRecorder
) -> list[IconEntry]:
    """IconEntries for pre-supplied role images.

    A key used for both roles yields one entry with both flags. An override
    that cannot be read is still recorded, with size 0.
    """
    roles: dict[str, dict[str, bool]] = {}
    if overrides.display:
        roles.setdefault(overrides.display, {})["display"] = True
    if overrides.full_size:
        roles.setdefault(overrides.full_size, {})["full_size"] = True

    entries = []
    for key, flags in roles.items():
        try:
            size = _stored_size(store, key)
        except (StorageError, *IMAGE_ERRORS) as exc:
            recorder.warning(record, "OverrideImage", f"cannot read {key}: {exc}")
            size = 0
        entries.append(IconEntry(key=key, size=size, override=True, **flags))
    return entries
