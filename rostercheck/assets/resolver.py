"""Resilient acquisition of the model bundle from interchangeable sources.

Every candidate location is raced concurrently. A candidate is validated
(status, content type, manifest shape) before any shard is fetched, and the
first candidate whose full load succeeds wins. In-flight losers are cancelled.
"""

from __future__ import annotations

import asyncio
import hashlib
import os
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union
from urllib.parse import urljoin, urlparse

import httpx

from rostercheck.assets.manifest import AssetBundle, AssetEntry, BundleManifest, parse_manifest
from rostercheck.core.errors import AcquisitionFailure, SourceFailure
from rostercheck.core.interfaces import EngineState
from rostercheck.core.logging_config import get_logger

logger = get_logger(__name__)


def _is_html(response: httpx.Response) -> bool:
    return "text/html" in response.headers.get("content-type", "").lower()


def _write_atomic(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    tmp_path.write_bytes(data)
    os.replace(tmp_path, path)


def _file_sha256(path: Path) -> Optional[str]:
    if not path.exists():
        return None
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1 << 20), b""):
            digest.update(chunk)
    return digest.hexdigest()


class ModelSourceResolver:
    """Race candidate model locations and return the first validated bundle.

    Candidates may be absolute URLs ("https://host/ai_models"), absolute
    same-origin paths ("/ai_models") or relative paths ("ai_models"); the last
    two are resolved against ``asset_origin``.

    Args:
        candidates: Candidate base locations, in preference order
        cache_dir: Directory receiving one cache subdirectory per candidate
        required_assets: Asset names the engines need from the manifest
        asset_origin: Origin used to resolve relative candidates
        manifest_name: Manifest file name under each candidate
        probe_timeout: Seconds allowed for the manifest probe
        download_timeout: Seconds allowed for each shard download
        transport: Optional httpx transport (tests use httpx.MockTransport)

    Example:
        >>> resolver = ModelSourceResolver(["https://cdn/ai_models"], Path("models"),
        ...                                required_assets=["landmarks_68"])
        >>> bundle = await resolver.resolve()
        >>> bundle.path("landmarks_68")
    """

    def __init__(
        self,
        candidates: Sequence[str],
        cache_dir: Union[str, Path],
        required_assets: Sequence[str] = (),
        asset_origin: Optional[str] = None,
        manifest_name: str = "bundle_manifest.json",
        probe_timeout: float = 3.0,
        download_timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not candidates:
            raise ValueError("At least one model source candidate is required")

        self.candidates: Tuple[str, ...] = tuple(candidates)
        self.cache_dir = Path(cache_dir)
        self.required_assets: Tuple[str, ...] = tuple(required_assets)
        self.asset_origin = asset_origin
        self.manifest_name = manifest_name
        self.probe_timeout = probe_timeout
        self.download_timeout = download_timeout
        self._transport = transport

        self._lock = asyncio.Lock()
        self._state = EngineState.NOT_LOADED
        self._bundle: Optional[AssetBundle] = None
        self._failure: Optional[AcquisitionFailure] = None

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def bundle(self) -> Optional[AssetBundle]:
        return self._bundle

    async def resolve(self, fresh: bool = False) -> AssetBundle:
        """Return the resolved bundle, racing all candidates on first use.

        Concurrent callers share one in-flight resolution. Once Ready, calls
        return the cached bundle; once Failed, they re-raise the cached error.

        Args:
            fresh: Discard any previous outcome and race the candidates again

        Raises:
            AcquisitionFailure: If every candidate failed, with one
                SourceFailure per candidate in candidate order.
        """
        async with self._lock:
            if fresh:
                self._state = EngineState.NOT_LOADED
                self._bundle = None
                self._failure = None

            if self._state == EngineState.READY and self._bundle is not None:
                return self._bundle
            if self._state == EngineState.FAILED and self._failure is not None:
                raise self._failure

            self._state = EngineState.LOADING
            try:
                bundle = await self._race()
            except AcquisitionFailure as e:
                self._state = EngineState.FAILED
                self._failure = e
                raise

            self._bundle = bundle
            self._state = EngineState.READY
            return bundle

    async def _race(self) -> AssetBundle:
        logger.info(f"Resolving model bundle from {len(self.candidates)} candidates")

        async with httpx.AsyncClient(
            transport=self._transport,
            follow_redirects=True,
        ) as client:
            tasks: Dict[asyncio.Task, int] = {
                asyncio.create_task(self._attempt(client, candidate)): index
                for index, candidate in enumerate(self.candidates)
            }
            failures: List[Tuple[int, SourceFailure]] = []
            pending = set(tasks)
            try:
                while pending:
                    done, pending = await asyncio.wait(
                        pending, return_when=asyncio.FIRST_COMPLETED
                    )
                    for task in sorted(done, key=tasks.__getitem__):
                        index = tasks[task]
                        error = task.exception()
                        if error is None:
                            bundle = task.result()
                            logger.info(
                                f"Model bundle {bundle.version or '?'} acquired from {bundle.source}"
                            )
                            return bundle
                        if not isinstance(error, SourceFailure):
                            error = SourceFailure(self.candidates[index], repr(error))
                        logger.warning(f"Model source rejected: {error}")
                        failures.append((index, error))
            finally:
                for task in tasks:
                    if not task.done():
                        task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)

        failures.sort(key=lambda item: item[0])
        error = AcquisitionFailure(
            "All model sources failed", [failure for _, failure in failures]
        )
        logger.error(str(error))
        raise error

    def _base_url(self, candidate: str) -> str:
        if urlparse(candidate).scheme in ("http", "https"):
            return candidate.rstrip("/") + "/"
        if not self.asset_origin:
            raise SourceFailure(candidate, "relative source with no asset origin configured")
        origin = self.asset_origin if self.asset_origin.endswith("/") else self.asset_origin + "/"
        return urljoin(origin, candidate).rstrip("/") + "/"

    def cache_path(self, candidate: str) -> Path:
        """Per-candidate cache directory."""
        key = hashlib.sha1(candidate.encode("utf-8")).hexdigest()[:12]
        return self.cache_dir / key

    async def _attempt(self, client: httpx.AsyncClient, candidate: str) -> AssetBundle:
        base = self._base_url(candidate)
        manifest, raw_manifest = await self._probe(client, candidate, base)

        target_dir = self.cache_path(candidate)
        entries = list(manifest.assets.values())
        paths = await asyncio.gather(
            *(self._fetch_asset(client, candidate, base, entry, target_dir) for entry in entries)
        )
        await asyncio.to_thread(_write_atomic, target_dir / self.manifest_name, raw_manifest)

        files = {entry.name: path for entry, path in zip(entries, paths)}
        return AssetBundle(source=candidate, version=manifest.version, files=files)

    async def _probe(
        self, client: httpx.AsyncClient, candidate: str, base: str
    ) -> Tuple[BundleManifest, bytes]:
        url = urljoin(base, self.manifest_name)
        # httpx timeouts are per phase; a server trickling bytes can outlive them
        try:
            response = await asyncio.wait_for(
                client.get(url, timeout=self.probe_timeout), self.probe_timeout
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise SourceFailure(candidate, f"manifest probe timed out after {self.probe_timeout}s") from e
        except httpx.HTTPError as e:
            raise SourceFailure(candidate, f"manifest probe failed: {e}") from e

        if not response.is_success:
            raise SourceFailure(candidate, f"manifest probe returned HTTP {response.status_code}")
        if _is_html(response):
            raise SourceFailure(candidate, "manifest probe returned an HTML page")

        try:
            manifest = parse_manifest(response.content)
            manifest.require(self.required_assets)
        except ValueError as e:
            raise SourceFailure(candidate, f"invalid manifest: {e}") from e

        return manifest, response.content

    async def _fetch_asset(
        self,
        client: httpx.AsyncClient,
        candidate: str,
        base: str,
        entry: AssetEntry,
        target_dir: Path,
    ) -> Path:
        target = target_dir / entry.file

        if entry.sha256 is not None:
            cached_digest = await asyncio.to_thread(_file_sha256, target)
            if cached_digest == entry.sha256:
                logger.debug(f"Asset '{entry.name}' already cached at {target}")
                return target

        shards = await asyncio.gather(
            *(self._fetch_shard(client, candidate, urljoin(base, p)) for p in entry.paths)
        )
        data = b"".join(shards)

        if entry.size is not None and len(data) != entry.size:
            raise SourceFailure(
                candidate, f"asset '{entry.name}' is {len(data)} bytes, expected {entry.size}"
            )
        if entry.sha256 is not None and hashlib.sha256(data).hexdigest() != entry.sha256:
            raise SourceFailure(candidate, f"asset '{entry.name}' failed checksum verification")

        await asyncio.to_thread(_write_atomic, target, data)
        logger.debug(f"Asset '{entry.name}' written to {target} ({len(data)} bytes)")
        return target

    async def _fetch_shard(self, client: httpx.AsyncClient, candidate: str, url: str) -> bytes:
        try:
            response = await client.get(url, timeout=self.download_timeout)
        except httpx.HTTPError as e:
            raise SourceFailure(candidate, f"shard download failed for {url}: {e}") from e

        if not response.is_success:
            raise SourceFailure(candidate, f"shard {url} returned HTTP {response.status_code}")
        if _is_html(response):
            raise SourceFailure(candidate, f"shard {url} returned an HTML page")
        return response.content

