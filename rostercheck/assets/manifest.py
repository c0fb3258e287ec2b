"""Model bundle manifest and the on-disk asset bundle.

A bundle is one JSON manifest plus binary shard files. Each asset's binary is
the in-order concatenation of its shards:

    {
      "format": "rostercheck-models",
      "version": "2024.1",
      "assets": {
        "face_recognition": {
          "file": "dlib_face_recognition_resnet_model_v1.dat",
          "paths": ["face_recognition-shard1", "face_recognition-shard2"],
          "sha256": "...",
          "size": 22466066
        }
      }
    }
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

MANIFEST_FORMAT = "rostercheck-models"

# Asset names understood by the engines
FAST_DETECTOR_ASSET = "face_detector_fast"
LANDMARKS_ASSET = "landmarks_68"
RECOGNITION_ASSET = "face_recognition"
CNN_DETECTOR_ASSET = "face_detector_cnn"


@dataclass(frozen=True)
class AssetEntry:
    """One asset of the bundle.

    Attributes:
        name: Asset name (e.g. "landmarks_68")
        file: Local file name the assembled asset is written to
        paths: Shard paths relative to the bundle base, in concatenation order
        sha256: Expected hex digest of the assembled asset, if declared
        size: Expected size in bytes of the assembled asset, if declared
    """

    name: str
    file: str
    paths: Tuple[str, ...]
    sha256: Optional[str] = None
    size: Optional[int] = None


@dataclass(frozen=True)
class BundleManifest:
    """Parsed bundle manifest."""

    version: str
    assets: Mapping[str, AssetEntry]

    def require(self, names: Iterable[str]) -> None:
        """Raise ValueError if any of ``names`` is not declared."""
        missing = [n for n in names if n not in self.assets]
        if missing:
            raise ValueError(f"Manifest is missing required assets: {', '.join(missing)}")


def _parse_entry(name: str, raw: Any) -> AssetEntry:
    if not isinstance(raw, dict):
        raise ValueError(f"Asset '{name}' must be an object")

    file_name = raw.get("file")
    if not isinstance(file_name, str) or not file_name or "/" in file_name or "\\" in file_name:
        raise ValueError(f"Asset '{name}' has an invalid file name: {file_name!r}")

    paths = raw.get("paths")
    if not isinstance(paths, list) or not paths or not all(isinstance(p, str) and p for p in paths):
        raise ValueError(f"Asset '{name}' must list at least one shard path")

    sha256 = raw.get("sha256")
    if sha256 is not None and (not isinstance(sha256, str) or len(sha256) != 64):
        raise ValueError(f"Asset '{name}' has an invalid sha256")

    size = raw.get("size")
    if size is not None and (isinstance(size, bool) or not isinstance(size, int) or size < 0):
        raise ValueError(f"Asset '{name}' has an invalid size: {size!r}")

    return AssetEntry(
        name=name,
        file=file_name,
        paths=tuple(paths),
        sha256=sha256.lower() if sha256 else None,
        size=size,
    )


def parse_manifest(payload: Union[bytes, str]) -> BundleManifest:
    """Parse and validate a manifest document.

    Args:
        payload: Raw manifest body

    Returns:
        BundleManifest instance.

    Raises:
        ValueError: If the payload is not JSON or does not have the manifest shape.
    """
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValueError(f"Manifest is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ValueError("Manifest must be a JSON object")

    if data.get("format") != MANIFEST_FORMAT:
        raise ValueError(f"Unexpected manifest format: {data.get('format')!r}")

    raw_assets = data.get("assets")
    if not isinstance(raw_assets, dict) or not raw_assets:
        raise ValueError("Manifest declares no assets")

    assets = {name: _parse_entry(name, raw) for name, raw in raw_assets.items()}
    return BundleManifest(version=str(data.get("version", "")), assets=assets)


@dataclass(frozen=True)
class AssetBundle:
    """Resolved model bundle on local disk.

    Attributes:
        source: Candidate location the bundle was acquired from
        version: Manifest version
        files: Asset name -> local file path
    """

    source: str
    version: str
    files: Mapping[str, Path] = field(default_factory=dict)

    def has(self, name: str) -> bool:
        return name in self.files

    def path(self, name: str) -> Path:
        """Local path of an asset.

        Raises:
            KeyError: If the bundle does not contain the asset.
        """
        try:
            return self.files[name]
        except KeyError:
            raise KeyError(f"Asset '{name}' is not part of bundle from {self.source}") from None

    @classmethod
    def from_directory(
        cls,
        directory: Union[str, Path],
        manifest_name: str = "bundle_manifest.json",
    ) -> AssetBundle:
        """Load a bundle already present on disk.

        The directory must contain the manifest plus one assembled file per
        asset (the layout written by the resolver cache and by
        scripts/download_models.py).

        Raises:
            FileNotFoundError: If the manifest or an asset file is missing.
            ValueError: If the manifest is malformed.
        """
        directory = Path(directory)
        manifest_path = directory / manifest_name
        if not manifest_path.exists():
            raise FileNotFoundError(f"Manifest not found: {manifest_path}")

        manifest = parse_manifest(manifest_path.read_bytes())

        files: Dict[str, Path] = {}
        for name, entry in manifest.assets.items():
            asset_path = directory / entry.file
            if not asset_path.exists():
                raise FileNotFoundError(f"Asset '{name}' not found: {asset_path}")
            files[name] = asset_path

        return cls(source=str(directory), version=manifest.version, files=files)
