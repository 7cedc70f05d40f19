"""appshelf: declarative distribution of mobile application packages.

Binary packages (Android ``.apk``, Apple ``.ipa``) live in object storage
and are described by small declarative records. Reconcilers converge those
records to their decoded state: version, identifiers, signing fingerprint,
icon derivatives, an aggregated "latest" view and the platform
app-association documents.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
