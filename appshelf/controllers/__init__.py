"""Reconcilers for every record kind, and the wiring that registers them."""

from __future__ import annotations

from collections.abc import Callable

from appshelf.config import Settings
from appshelf.controllers.artifact import (
    ArtifactReconciler,
    android_reconciler,
    apple_reconciler,
)
from appshelf.controllers.bucket import BucketReconciler
from appshelf.controllers.common import FINALIZER, FORCE_UNPACK_ANNOTATION
from appshelf.controllers.mobileapp import MobileAppReconciler
from appshelf.controllers.pipeline import ContentPipeline, DecoderCapability
from appshelf.controllers.upload import UploadReconciler
from appshelf.core.events import EventRecorder
from appshelf.core.manager import ControllerManager
from appshelf.core.record_store import RecordStore
from appshelf.core.storage import Store, open_store
from appshelf.decoders.base import Decoder


def setup_controllers(
    manager: ControllerManager,
    records: RecordStore,
    recorder: EventRecorder,
    settings: Settings,
    opener: Callable[[str], Store] = open_store,
    android_decoder: Decoder | None = None,
    apple_decoder: Decoder | None = None,
) -> None:
    """Register the five reconcilers with ``manager``."""
    manager.register(BucketReconciler(records, settings, opener))
    manager.register(android_reconciler(records, recorder, settings, android_decoder, opener))
    manager.register(apple_reconciler(records, recorder, settings, apple_decoder, opener))
    manager.register(MobileAppReconciler(records, settings))
    manager.register(UploadReconciler(records, settings, opener))


__all__ = [
    "ArtifactReconciler",
    "BucketReconciler",
    "ContentPipeline",
    "DecoderCapability",
    "MobileAppReconciler",
    "UploadReconciler",
    "FINALIZER",
    "FORCE_UNPACK_ANNOTATION",
    "android_reconciler",
    "apple_reconciler",
    "setup_controllers",
]
