"""Turn a Bucket record into an open store.

The connection string comes either from the record itself or from one field
of a Secret or ConfigMap in the bucket's namespace.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import cast

from appshelf.core.errors import NotFoundError, TransientDependencyError
from appshelf.core.record_store import RecordStore
from appshelf.core.storage import Store, open_store
from appshelf.models.bucket import Bucket, ConfigMap, KeySelector, Secret, URLSource
from appshelf.models.meta import ObjectKey

logger = logging.getLogger(__name__)


class InvalidBucketSpec(ValueError):
    """Neither or both URL sources set, or an empty indirect source."""


class ReferenceNotFoundError(TransientDependencyError):
    """The referenced Secret or ConfigMap does not exist (yet)."""


class MissingKeyError(RuntimeError):
    """The referenced Secret or ConfigMap lacks the named field."""


def bucket_url(bucket: Bucket, records: RecordStore) -> str:
    """Resolve the connection string of ``bucket``."""
    spec = bucket.spec
    if bool(spec.url) == (spec.url_from is not None):
        raise InvalidBucketSpec(
            f"bucket {bucket.key}: exactly one of url and url_from must be set"
        )
    if spec.url:
        return spec.url

    source = cast(URLSource, spec.url_from)
    if (source.secret_key_ref is None) == (source.config_map_key_ref is None):
        raise InvalidBucketSpec(
            f"bucket {bucket.key}: url_from must name exactly one of "
            "secret_key_ref and config_map_key_ref"
        )

    namespace = bucket.metadata.namespace
    if source.secret_key_ref is not None:
        ref = source.secret_key_ref
        try:
            secret = records.get(Secret, ObjectKey(namespace=namespace, name=ref.name))
        except NotFoundError as exc:
            raise ReferenceNotFoundError(
                f"secret {namespace}/{ref.name} not found"
            ) from exc
        if ref.key not in secret.data:
            raise MissingKeyError(f"secret {namespace}/{ref.name} has no key {ref.key!r}")
        return secret.data[ref.key].decode("utf-8").strip()

    ref = cast(KeySelector, source.config_map_key_ref)
    try:
        config_map = records.get(ConfigMap, ObjectKey(namespace=namespace, name=ref.name))
    except NotFoundError as exc:
        raise ReferenceNotFoundError(
            f"config map {namespace}/{ref.name} not found"
        ) from exc
    if ref.key not in config_map.data:
        raise MissingKeyError(f"config map {namespace}/{ref.name} has no key {ref.key!r}")
    return config_map.data[ref.key].strip()


def resolve_store(
    bucket: Bucket,
    records: RecordStore,
    opener: Callable[[str], Store] = open_store,
) -> Store:
    """Open the store behind ``bucket``. Errors propagate unclassified."""
    url = bucket_url(bucket, records)
    store = opener(url)
    logger.debug("bucket %s resolved to %r", bucket.key, store)
    return store
