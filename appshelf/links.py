"""Platform app-association documents and their delivery manifests.

Android verifies app links against ``/.well-known/assetlinks.json``; Apple
against ``/.well-known/apple-app-site-association``. Both are rendered from
a MobileApp's aggregated status and served by a static server behind a route
for ``spec.universal_links.host``.
"""

from __future__ import annotations

import json
from typing import Any

from appshelf.models.manifest import Manifest
from appshelf.models.meta import ObjectMeta
from appshelf.models.mobileapp import MobileApp

ASSET_LINKS_PATH = "/.well-known/assetlinks.json"
APPLE_APP_SITE_ASSOCIATION_PATH = "/.well-known/apple-app-site-association"
CONTENT_TYPE_JSON = "application/json"

ASSET_LINKS_FILE = "assetlinks.json"
APPLE_APP_SITE_ASSOCIATION_FILE = "apple-app-site-association"

HANDLE_ALL_URLS = "delegate_permission/common.handle_all_urls"

ISSUER_ANNOTATION = "cert-manager.io/issuer"
CLUSTER_ISSUER_ANNOTATION = "cert-manager.io/cluster-issuer"


def asset_links(targets: dict[str, list[str]]) -> list[dict[str, Any]]:
    """One statement per package, sorted by package name."""
    return [
        {
            "relation": [HANDLE_ALL_URLS],
            "target": {
                "namespace": "android_app",
                "package_name": package,
                "sha256_cert_fingerprints": sorted(set(fingerprints)),
            },
        }
        for package, fingerprints in sorted(targets.items())
    ]


def apple_app_site_association(app_ids: list[str]) -> dict[str, Any]:
    return {
        "applinks": {
            "details": [
                {
                    "appIDs": sorted(set(app_ids)),
                    "components": [{"/": "/", "comment": "Matches any URL."}],
                }
            ]
        }
    }


def render(document: Any) -> str:
    return json.dumps(document, indent=2) + "\n"


def documents(app: MobileApp) -> dict[str, str]:
    """File name -> rendered document for the app's current status."""
    return {
        ASSET_LINKS_FILE: render(asset_links(app.status.asset_link_targets)),
        APPLE_APP_SITE_ASSOCIATION_FILE: render(
            apple_app_site_association(app.status.bundle_identifiers)
        ),
    }


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------


def config_name(app: MobileApp) -> str:
    return f"{app.metadata.name}-universal-links"


def server_name(app: MobileApp) -> str:
    return f"{config_name(app)}-server"


def route_name(app: MobileApp) -> str:
    return f"{config_name(app)}-route"


def _meta(app: MobileApp, name: str) -> ObjectMeta:
    return ObjectMeta(
        namespace=app.metadata.namespace,
        name=name,
        labels={"app.kubernetes.io/managed-by": "appshelf", "appshelf.dev/mobileapp": app.metadata.name},
    )


def delivery_manifests(app: MobileApp, server_image: str) -> list[Manifest]:
    """The config object, static server and route that publish the documents.

    The route carries an issuer annotation and a TLS block when the app
    references an issuer.
    """
    links = app.spec.universal_links
    config = Manifest(
        metadata=_meta(app, config_name(app)),
        manifest_kind="ConfigMap",
        body={
            "data": documents(app),
            "contentTypes": {
                ASSET_LINKS_FILE: CONTENT_TYPE_JSON,
                APPLE_APP_SITE_ASSOCIATION_FILE: CONTENT_TYPE_JSON,
            },
        },
    )
    server = Manifest(
        metadata=_meta(app, server_name(app)),
        manifest_kind="Deployment",
        body={
            "image": server_image,
            "port": 80,
            "volumes": [
                {
                    "configMap": config_name(app),
                    "items": {
                        ASSET_LINKS_FILE: ASSET_LINKS_PATH,
                        APPLE_APP_SITE_ASSOCIATION_FILE: APPLE_APP_SITE_ASSOCIATION_PATH,
                    },
                }
            ],
        },
    )

    route_body: dict[str, Any] = {
        "host": links.host,
        "paths": [
            {"path": ASSET_LINKS_PATH, "service": server_name(app), "port": 80},
            {"path": APPLE_APP_SITE_ASSOCIATION_PATH, "service": server_name(app), "port": 80},
        ],
    }
    route = Manifest(metadata=_meta(app, route_name(app)), manifest_kind="Ingress", body=route_body)
    if links.issuer is not None:
        annotation = (
            CLUSTER_ISSUER_ANNOTATION if links.issuer.kind == "ClusterIssuer" else ISSUER_ANNOTATION
        )
        route.metadata.annotations[annotation] = links.issuer.name
        route_body["tls"] = [{"hosts": [links.host], "secretName": f"{config_name(app)}-tls"}]

    return [config, server, route]
