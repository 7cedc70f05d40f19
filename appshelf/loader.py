"""Load records from YAML manifests.

Each YAML document names its ``kind`` and carries ``metadata`` plus the
kind's fields (``spec``, ``data``, ``body``)::

    kind: Bucket
    metadata:
      name: apps
    spec:
      url: file:///srv/apps
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from appshelf.models import RECORD_TYPES, Record

logger = logging.getLogger(__name__)

_SUFFIXES = (".yaml", ".yml")


class ManifestError(ValueError):
    """A manifest could not be parsed into a record."""


def parse_document(doc: dict, source: str = "<document>") -> Record:
    if not isinstance(doc, dict):
        raise ManifestError(f"{source}: expected a mapping, got {type(doc).__name__}")
    kind = doc.get("kind")
    cls = RECORD_TYPES.get(kind or "")
    if cls is None:
        raise ManifestError(f"{source}: unknown kind {kind!r}")
    fields = {k: v for k, v in doc.items() if k not in ("kind", "apiVersion")}
    try:
        return cls.model_validate(fields)
    except ValidationError as exc:
        raise ManifestError(f"{source}: invalid {kind}: {exc}") from exc


def load_records(path: Path) -> list[Record]:
    """Records from one manifest file or every manifest in a directory."""
    path = Path(path)
    if path.is_dir():
        files = sorted(p for p in path.rglob("*") if p.suffix in _SUFFIXES and p.is_file())
    elif path.is_file():
        files = [path]
    else:
        raise ManifestError(f"{path}: no such file or directory")

    records: list[Record] = []
    for file in files:
        try:
            with open(file, encoding="utf-8") as fh:
                docs = [d for d in yaml.safe_load_all(fh) if d is not None]
        except yaml.YAMLError as exc:
            raise ManifestError(f"{file}: {exc}") from exc
        for i, doc in enumerate(docs):
            records.append(parse_document(doc, f"{file}[{i}]"))
        logger.debug("loaded %d records from %s", len(docs), file)
    return records
