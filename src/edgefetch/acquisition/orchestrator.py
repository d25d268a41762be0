"""
Top-level model acquisition.

:class:`ModelAcquirer` resolves a reference, reads the remote manifest,
selects a file, short-circuits on a valid cached copy, and otherwise runs a
download backend (aria2c first when preferred and installed, falling back
to in-process streaming) that verifies and atomically commits the file.
"""

from __future__ import annotations

import functools
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)

import requests

from .base import DownloadBackend, DownloadTarget, ProgressCallback, discard_temporary
from .cache import CacheLayout, check_cached_file, partial_path_for
from .cancellation import CancellationToken
from .config import AcquisitionConfig
from .endpoints import HubEndpoints
from .errors import BundleIncompleteError, DownloadCancelled, NotFoundError
from .manifest import ContentHash, ManifestFetcher, RemoteFileEntry
from .references import DEFAULT_REVISION, ModelReference, ReferenceResolver
from .registry import ROLE_EXTENSIONS, BundleDescriptor, FileRef, ModelRegistry
from .selection import (
    QUANTIZED_EXTENSIONS,
    SelectionCriteria,
    select_quantized,
    select_repository_file,
)
from .streaming import StreamingDownloader
from .system_backend import SystemDownloadBridge

logger = logging.getLogger(__name__)

PRIMARY_ROLE = "primary"

# (role, bytes_so_far, total_bytes_or_None)
BundleProgressCallback = Callable[[str, int, Optional[int]], None]
Selector = Callable[
    [Sequence[RemoteFileEntry], SelectionCriteria], Optional[RemoteFileEntry]
]


@dataclass
class _DestinationLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


@dataclass(frozen=True)
class FileMetadata:
    relative_path: str
    size_bytes: int
    expected_size: Optional[int] = None
    content_hash: Optional[ContentHash] = None
    hash_verified: bool = False


@dataclass(frozen=True)
class DownloadResult:
    reference: ModelReference
    local_file: Path
    file_metadata: FileMetadata
    from_cache: bool
    alias_applied: bool


@dataclass(frozen=True)
class BundleResult:
    descriptor: BundleDescriptor
    primary: DownloadResult
    auxiliary: Dict[str, DownloadResult] = field(default_factory=dict)

    @property
    def files(self) -> List[Path]:
        aux = [result.local_file for result in self.auxiliary.values()]
        return [self.primary.local_file] + aux


class ModelAcquirer:
    """Acquire model files into the local cache.

    The acquirer owns one :class:`requests.Session` shared by manifest and
    file requests. Acquisitions of the same destination path are serialized
    within this instance.
    """

    def __init__(
        self,
        config: Optional[AcquisitionConfig] = None,
        *,
        session: Optional[requests.Session] = None,
        manifest_fetcher: Optional[ManifestFetcher] = None,
        streaming: Optional[DownloadBackend] = None,
        system_backend: Optional[DownloadBackend] = None,
        registry: Optional[ModelRegistry] = None,
        resolver: Optional[ReferenceResolver] = None,
    ):
        self.config = config or AcquisitionConfig()
        self.session = session or requests.Session()
        self.endpoints = HubEndpoints(self.config.hub_url)
        self.layout = CacheLayout(self.config.cache_root)
        self.manifest_fetcher = manifest_fetcher or ManifestFetcher(
            self.session, self.endpoints, self.config.timeout
        )
        self.streaming = streaming or StreamingDownloader(
            self.session,
            chunk_size=self.config.chunk_size,
            timeout=self.config.timeout,
        )
        self.system_backend = system_backend or SystemDownloadBridge(
            self.config.aria2c_path,
            poll_interval=self.config.poll_interval,
            max_connections=self.config.max_connections_per_server,
        )
        self.resolver = resolver or ReferenceResolver(self.config.aliases)
        if registry is None:
            registry = (
                ModelRegistry.from_json(self.config.registry_path)
                if self.config.registry_path
                else ModelRegistry.default()
            )
        self.registry = registry

        self._state_lock = threading.Lock()
        self._destination_locks: Dict[Path, _DestinationLock] = {}
        self._active_tokens: Set[CancellationToken] = set()

    # ------------------------------------------------------------------ #
    # Public operations
    # ------------------------------------------------------------------ #

    def acquire(
        self,
        model_id: str,
        revision: str = DEFAULT_REVISION,
        *,
        filename: Optional[str] = None,
        variant_priority: Optional[Sequence[str]] = None,
        token: Optional[str] = None,
        force_refresh: bool = False,
        prefer_system_backend: Optional[bool] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> DownloadResult:
        """Acquire one quantized weight file (``.gguf``) of a model."""
        if variant_priority is None:
            variant_priority = self.config.variant_priority
        criteria = SelectionCriteria.build(
            filename, variant_priority, QUANTIZED_EXTENSIONS
        )
        return self._acquire(
            model_id,
            revision,
            criteria,
            select_quantized,
            token=token,
            force_refresh=force_refresh,
            prefer_system_backend=prefer_system_backend,
            progress=progress,
        )

    def acquire_repo_file(
        self,
        model_id: str,
        revision: str = DEFAULT_REVISION,
        *,
        filename: Optional[str] = None,
        extensions: Optional[Sequence[str]] = None,
        strict: bool = False,
        token: Optional[str] = None,
        force_refresh: bool = False,
        prefer_system_backend: Optional[bool] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> DownloadResult:
        """Acquire a single artifact (VAE, encoder, checkpoint) of any type."""
        criteria = SelectionCriteria.build(
            filename,
            extensions=extensions or self.config.repo_file_extensions,
            strict=strict,
        )
        return self._acquire(
            model_id,
            revision,
            criteria,
            select_repository_file,
            token=token,
            force_refresh=force_refresh,
            prefer_system_backend=prefer_system_backend,
            progress=progress,
        )

    def acquire_bundle(
        self,
        bundle: Union[str, BundleDescriptor],
        *,
        token: Optional[str] = None,
        force_refresh: bool = False,
        prefer_system_backend: Optional[bool] = None,
        progress: Optional[BundleProgressCallback] = None,
    ) -> BundleResult:
        """Acquire the primary file, then every configured auxiliary role.

        A role with no configured file is skipped. A configured role that
        cannot be resolved fails the whole bundle.
        """
        descriptor = self._lookup_bundle(bundle)

        def _progress_for(role: str) -> Optional[ProgressCallback]:
            return functools.partial(progress, role) if progress is not None else None

        options = dict(
            token=token,
            force_refresh=force_refresh,
            prefer_system_backend=prefer_system_backend,
        )
        primary = self._acquire_ref(
            descriptor.primary,
            PRIMARY_ROLE,
            progress=_progress_for(PRIMARY_ROLE),
            **options,
        )

        auxiliary: Dict[str, DownloadResult] = {}
        for role, ref in descriptor.auxiliary.items():
            if ref is None:
                logger.info(
                    "Bundle %s has no %s configured; skipping",
                    descriptor.identifier,
                    role,
                )
                continue
            if not ref.filename:
                raise BundleIncompleteError(
                    f"Bundle {descriptor.identifier} names a {role} repository "
                    f"({ref.model_id}) but no file",
                    role=role,
                )
            try:
                auxiliary[role] = self._acquire_ref(
                    ref, role, progress=_progress_for(role), **options
                )
            except NotFoundError as e:
                raise BundleIncompleteError(
                    f"Bundle {descriptor.identifier} is missing its {role}: {e}",
                    role=role,
                ) from e

        return BundleResult(descriptor=descriptor, primary=primary, auxiliary=auxiliary)

    def inspect(
        self,
        model_id: str,
        revision: str = DEFAULT_REVISION,
        *,
        token: Optional[str] = None,
    ) -> Tuple[ModelReference, List[RemoteFileEntry]]:
        """Resolve a reference and return its manifest without downloading."""
        reference = self.resolver.resolve(model_id, revision)
        entries = self.manifest_fetcher.fetch(
            reference.resolved_id, reference.resolved_revision, self._token(token)
        )
        return reference, entries

    def list_cached_models(self) -> List[Path]:
        return self.layout.list_cached_models()

    def clear_cache(self) -> None:
        self.layout.clear()

    def cancel(self) -> None:
        """Signal every in-flight transfer to stop. No-op when idle."""
        with self._state_lock:
            tokens = list(self._active_tokens)
        for cancel_token in tokens:
            cancel_token.cancel()
        if tokens:
            logger.info("Cancellation requested for %d transfer(s)", len(tokens))

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _token(self, token: Optional[str]) -> Optional[str]:
        return token if token else self.config.token

    def _lookup_bundle(self, bundle: Union[str, BundleDescriptor]) -> BundleDescriptor:
        if isinstance(bundle, BundleDescriptor):
            return bundle
        descriptor = self.registry.find(bundle)
        if descriptor is None:
            raise NotFoundError(f"No bundle registered for '{bundle}'")
        return descriptor

    def _acquire_ref(self, ref: FileRef, role: str, **kwargs) -> DownloadResult:
        extensions = ROLE_EXTENSIONS.get(role)
        return self.acquire_repo_file(
            ref.model_id,
            ref.revision,
            filename=ref.filename,
            extensions=extensions,
            strict=True,
            **kwargs,
        )

    @contextmanager
    def _destination_lock(self, destination: Path) -> Iterator[None]:
        key = destination.absolute()
        with self._state_lock:
            entry = self._destination_locks.get(key)
            if entry is None:
                entry = self._destination_locks[key] = _DestinationLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._state_lock:
                entry.users -= 1
                # Nobody holds or waits on it any more
                if entry.users == 0:
                    del self._destination_locks[key]

    @contextmanager
    def _cancellation_scope(self) -> Iterator[CancellationToken]:
        cancel_token = CancellationToken()
        with self._state_lock:
            self._active_tokens.add(cancel_token)
        try:
            yield cancel_token
        finally:
            with self._state_lock:
                self._active_tokens.discard(cancel_token)

    def _acquire(
        self,
        model_id: str,
        revision: str,
        criteria: SelectionCriteria,
        selector: Selector,
        *,
        token: Optional[str],
        force_refresh: bool,
        prefer_system_backend: Optional[bool],
        progress: Optional[ProgressCallback],
    ) -> DownloadResult:
        token = self._token(token)
        reference = self.resolver.resolve(model_id, revision)
        if reference.alias_applied:
            logger.info("Resolved alias %s -> %s", model_id, reference.resolved_id)

        entries = self.manifest_fetcher.fetch(
            reference.resolved_id, reference.resolved_revision, token
        )
        entry = selector(entries, criteria)
        if entry is None:
            wanted = criteria.explicit_filename or "/".join(criteria.allowed_extensions)
            raise NotFoundError(
                f"No file matching {wanted} in {reference.resolved_id}"
                f"@{reference.resolved_revision}"
            )

        destination = self.layout.destination(
            reference.resolved_id, reference.resolved_revision, entry.relative_path
        )
        with self._destination_lock(destination):
            if not force_refresh:
                valid, verified = check_cached_file(
                    destination, entry.size_bytes, entry.content_hash
                )
                if valid:
                    logger.info("Cache hit for %s", destination)
                    return self._result(
                        reference,
                        entry,
                        destination,
                        from_cache=True,
                        hash_verified=verified,
                    )

            target = DownloadTarget(
                source_url=self.endpoints.file_url(
                    reference.resolved_id,
                    reference.resolved_revision,
                    entry.relative_path,
                ),
                destination_path=destination,
                temporary_path=partial_path_for(destination),
                expected_size=entry.size_bytes,
                expected_hash=entry.content_hash,
            )
            destination.parent.mkdir(parents=True, exist_ok=True)
            if force_refresh and target.temporary_path.exists():
                logger.info("Discarding partial file %s", target.temporary_path)
                discard_temporary(target)

            use_system = (
                self.config.prefer_system_backend
                if prefer_system_backend is None
                else prefer_system_backend
            )
            with self._cancellation_scope() as cancel_token:
                self._download(target, token, progress, cancel_token, use_system)

            return self._result(
                reference,
                entry,
                destination,
                from_cache=False,
                hash_verified=target.hash_verified,
            )

    def _download(
        self,
        target: DownloadTarget,
        token: Optional[str],
        progress: Optional[ProgressCallback],
        cancel_token: CancellationToken,
        use_system: bool,
    ) -> Path:
        if use_system and self.system_backend.is_available():
            logger.info(
                "Downloading %s with %s",
                target.destination_path.name,
                self.system_backend.name,
            )
            try:
                return self.system_backend.fetch(
                    target, token=token, progress=progress, cancel_token=cancel_token
                )
            except (DownloadCancelled, MemoryError):
                raise
            except Exception as e:
                logger.warning(
                    "%s failed for %s (%s); falling back to %s",
                    self.system_backend.name,
                    target.destination_path.name,
                    e,
                    self.streaming.name,
                )
        elif use_system:
            logger.info(
                "%s is not available; using %s",
                self.system_backend.name,
                self.streaming.name,
            )

        return self.streaming.fetch(
            target, token=token, progress=progress, cancel_token=cancel_token
        )

    @staticmethod
    def _result(
        reference: ModelReference,
        entry: RemoteFileEntry,
        destination: Path,
        *,
        from_cache: bool,
        hash_verified: bool = False,
    ) -> DownloadResult:
        metadata = FileMetadata(
            relative_path=entry.relative_path,
            size_bytes=destination.stat().st_size,
            expected_size=entry.size_bytes,
            content_hash=entry.content_hash,
            hash_verified=hash_verified,
        )
        return DownloadResult(
            reference=reference,
            local_file=destination,
            file_metadata=metadata,
            from_cache=from_cache,
            alias_applied=reference.alias_applied,
        )


__all__ = [
    "BundleResult",
    "DownloadResult",
    "FileMetadata",
    "ModelAcquirer",
]
