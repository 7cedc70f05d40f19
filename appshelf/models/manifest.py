"""Inert records: delivery resources and certificate issuers.

The core never interprets their bodies; it only creates, patches and
watches them.
"""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import Field

from appshelf.models.meta import Record


class Manifest(Record):
    """A templated resource produced by delivery provisioning.

    ``manifest_kind`` names what the body describes (``ConfigMap``,
    ``Deployment``, ``Service``, ``Ingress``).
    """

    kind: ClassVar[str] = "Manifest"

    manifest_kind: str
    body: dict[str, Any] = Field(default_factory=dict)


class Issuer(Record):
    kind: ClassVar[str] = "Issuer"

    body: dict[str, Any] = Field(default_factory=dict)


class ClusterIssuer(Record):
    kind: ClassVar[str] = "ClusterIssuer"

    body: dict[str, Any] = Field(default_factory=dict)
