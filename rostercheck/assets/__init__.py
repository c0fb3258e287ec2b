"""Model asset acquisition.

Components:
- BundleManifest / parse_manifest: manifest document listing assets and shards
- AssetBundle: resolved bundle on local disk
- ModelSourceResolver: races candidate sources and validates before loading
"""

from rostercheck.assets.manifest import AssetBundle, AssetEntry, BundleManifest, parse_manifest
from rostercheck.assets.resolver import ModelSourceResolver

__all__ = [
    "AssetBundle",
    "AssetEntry",
    "BundleManifest",
    "ModelSourceResolver",
    "parse_manifest",
]
