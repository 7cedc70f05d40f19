"""MobileApp reconciler — joins Ready artifacts by label selector.

Each pass recomputes the whole view from the current artifact list, so the
result never depends on the order in which artifacts changed.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence

from appshelf import links
from appshelf.config import Settings
from appshelf.controllers.common import save_status, status_snapshot
from appshelf.core.errors import NotFoundError
from appshelf.core.manager import KeyMapper, Result
from appshelf.core.record_store import RecordStore, create_or_patch
from appshelf.decoders.version import is_valid, sort_key
from appshelf.models.artifacts import AndroidPackage, ApplePackage
from appshelf.models.conditions import set_condition
from appshelf.models.manifest import Manifest
from appshelf.models.meta import ObjectKey, Phase, Record
from appshelf.models.mobileapp import AppProjection, MobileApp

logger = logging.getLogger(__name__)

CONDITION_AGGREGATED = "Aggregated"


def project(artifacts: Sequence[AndroidPackage | ApplePackage]) -> list[AppProjection]:
    """Projections sorted by name with ``latest`` on the highest version.

    Equal versions resolve to the smallest name; invalid versions never win.
    """
    ordered = sorted(artifacts, key=lambda a: a.metadata.name)
    latest: str | None = None
    best: tuple | None = None
    for artifact in ordered:
        if not is_valid(artifact.status.version):
            continue
        k = sort_key(artifact.status.version)
        if best is None or k > best:
            best, latest = k, artifact.metadata.name
    return [
        AppProjection(
            name=a.metadata.name,
            bucket=a.spec.bucket,
            key=a.spec.key,
            version=a.status.version,
            latest=a.metadata.name == latest,
        )
        for a in ordered
    ]


class MobileAppReconciler:
    name = "mobileapp"
    record_type = MobileApp

    def __init__(self, records: RecordStore, settings: Settings) -> None:
        self._records = records
        self._settings = settings

    def watches(self) -> list[tuple[str, KeyMapper]]:
        return [
            (AndroidPackage.kind, self._apps_selecting),
            (ApplePackage.kind, self._apps_selecting),
            ("Issuer", self._apps_referencing),
            ("ClusterIssuer", self._apps_referencing),
        ]

    def _apps_selecting(self, artifact: Record) -> list[ObjectKey]:
        return [
            app.key
            for app in self._records.list(MobileApp, namespace=artifact.metadata.namespace)
            if app.spec.matches(artifact.metadata.labels)
        ]

    def _apps_referencing(self, issuer: Record) -> list[ObjectKey]:
        namespace = None if issuer.kind == "ClusterIssuer" else issuer.metadata.namespace
        return [
            app.key
            for app in self._records.list(MobileApp, namespace=namespace)
            if app.references_issuer(issuer.kind, issuer.metadata.namespace, issuer.metadata.name)
        ]

    def _selected(self, app: MobileApp, cls: type) -> list:
        return [
            a
            for a in self._records.list(cls, namespace=app.metadata.namespace)
            if app.spec.matches(a.metadata.labels) and a.status.phase is Phase.READY
        ]

    def reconcile(self, key: ObjectKey, cancel: threading.Event) -> Result:
        try:
            app = self._records.get(MobileApp, key)
        except NotFoundError:
            return Result()
        if app.deletion_requested:
            return Result()
        snapshot = status_snapshot(app)

        apks: list[AndroidPackage] = self._selected(app, AndroidPackage)
        ipas: list[ApplePackage] = self._selected(app, ApplePackage)

        targets: dict[str, set[str]] = {}
        for apk in apks:
            if apk.status.package and apk.status.sha256_cert_fingerprints:
                targets.setdefault(apk.status.package, set()).add(apk.status.sha256_cert_fingerprints)

        status = app.status
        status.apks = project(apks)
        status.ipas = project(ipas)
        status.asset_link_targets = {pkg: sorted(fps) for pkg, fps in sorted(targets.items())}
        status.bundle_identifiers = sorted(
            {ipa.status.bundle_identifier for ipa in ipas if ipa.status.bundle_identifier}
        )
        status.phase = Phase.READY
        set_condition(
            app,
            CONDITION_AGGREGATED,
            True,
            CONDITION_AGGREGATED,
            f"{len(apks)} apks, {len(ipas)} ipas",
        )
        save_status(self._records, app, snapshot)

        if app.spec.universal_links.host:
            self._provision(app)
        else:
            self._deprovision(app)
        return Result(requeue_after=self._settings.resync_seconds)

    def _provision(self, app: MobileApp) -> None:
        for desired in links.delivery_manifests(app, self._settings.static_server_image):

            def mutate(existing: Record, desired: Manifest = desired) -> None:
                if not isinstance(existing, Manifest):
                    raise TypeError(f"expected Manifest, got {existing.kind}")
                existing.manifest_kind = desired.manifest_kind
                existing.body = desired.body
                existing.metadata.labels.update(desired.metadata.labels)
                for annotation in (links.ISSUER_ANNOTATION, links.CLUSTER_ISSUER_ANNOTATION):
                    existing.metadata.annotations.pop(annotation, None)
                existing.metadata.annotations.update(desired.metadata.annotations)
                existing.set_controller_reference(app)

            outcome = create_or_patch(self._records, desired.model_copy(deep=True), mutate)
            if outcome != "unchanged":
                logger.info("mobileapp %s: %s %s", app.key, outcome, desired.metadata.name)

    def _deprovision(self, app: MobileApp) -> None:
        for name in (links.config_name(app), links.server_name(app), links.route_name(app)):
            key = ObjectKey(namespace=app.metadata.namespace, name=name)
            try:
                existing = self._records.get(Manifest, key)
            except NotFoundError:
                continue
            if existing.owned_by(app):
                self._records.delete(Manifest, key)
                logger.info("mobileapp %s: removed %s", app.key, name)
