"""
Version resolution: pick the loader version compatible with a runtime version
and turn its manifest entry into an :class:`InstallPlan`.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from silkinstaller.installer_exceptions import ConfigurationError, ManifestMalformed, NoCompatibleVersion
from silkinstaller.installer_logger import InstallerLogger
from silkinstaller.manifest_models import (
    ArtifactDescriptor,
    Checksum,
    InstallPlan,
    VersionEntry,
    VersionManifest,
    normalise_relative_path,
)
from silkinstaller.progress import Phase, ProgressBus
from silkinstaller.version_resolver.manifest_source import ManifestCache, ManifestSource, RunManifestCache
from silkinstaller.versioning import (
    ReleaseChannel,
    SemanticVersionComparator,
    VersionComparator,
    VersionRange,
    parse_range,
)


@dataclass(frozen=True)
class VersionCandidate:
    """A manifest entry with its parsed version key and compatibility range."""

    version: str
    entry: VersionEntry
    sort_key: Any
    runtime_range: VersionRange

    @property
    def channel(self) -> ReleaseChannel:
        return self.entry.release_channel


class VersionResolver:
    """
    Resolves ``(target runtime version, optional requested loader version)``
    into an install plan.

    Without an explicit request, the highest compatible version in a channel at
    least as stable as ``release_channel`` wins. If no such version exists, the
    most stable channel that has a compatible version is used instead, with a
    warning. Versions of equal precedence are ordered by: the configured
    channel, then stability, then version id.
    """

    def __init__(
        self,
        source: ManifestSource,
        logger: InstallerLogger,
        comparator: Optional[VersionComparator] = None,
        release_channel: Any = ReleaseChannel.STABLE,
        cache: Optional[ManifestCache] = None,
        bus: Optional[ProgressBus] = None,
    ) -> None:
        self.source = source
        self.logger = logger
        self.comparator = comparator or SemanticVersionComparator()
        self.release_channel = ReleaseChannel.parse(release_channel)
        self.cache = cache if cache is not None else RunManifestCache()
        self.bus = bus

    def get_manifest(self) -> VersionManifest:
        """
        Return the manifest, fetching it from the source at most once per cache.
        """
        manifest = self.cache.get(self.source.location)
        if manifest is None:
            manifest = self.source.fetch()
            self.cache.put(self.source.location, manifest)
        return manifest

    def resolve(self, target_runtime_version: str, requested_loader_version: Optional[str] = None) -> InstallPlan:
        """
        Choose a loader version and build its install plan.

        Args:
            target_runtime_version: Version of the application the loader runs in
            requested_loader_version: Exact loader version to install, or None
                for the latest compatible one

        Returns:
            InstallPlan for the chosen version

        Raises:
            ManifestUnavailable: If the manifest cannot be fetched
            ManifestMalformed: If the manifest or the chosen entry is invalid
            NoCompatibleVersion: If no entry satisfies the constraints
        """
        self._check_runtime_version(target_runtime_version)
        if self.bus is not None:
            self.bus.phase(Phase.RESOLVE, f"Resolving loader for runtime {target_runtime_version}")

        manifest = self.get_manifest()
        candidates = self._parse_candidates(manifest)

        if requested_loader_version:
            chosen = self._select_requested(candidates, target_runtime_version, requested_loader_version)
        else:
            chosen = self._select_latest(candidates, target_runtime_version)

        plan = self._build_plan(manifest, chosen, target_runtime_version)
        self.logger.log(
            f"Resolved loader {plan.loader_version} ({chosen.channel.value}) for runtime "
            f"{target_runtime_version} with {len(plan.artifacts)} artifact(s)",
            logging.INFO,
        )
        return plan

    def available_versions(self, target_runtime_version: Optional[str] = None) -> List[Tuple[str, str]]:
        """
        List ``(version, channel)`` pairs, best first. When a runtime version is
        given only compatible versions are listed. The channel filter is not
        applied.
        """
        if target_runtime_version is not None:
            self._check_runtime_version(target_runtime_version)
        candidates = self._parse_candidates(self.get_manifest())
        if target_runtime_version is not None:
            candidates = [c for c in candidates if c.runtime_range.contains(target_runtime_version, self.comparator)]
        ordered = sorted(candidates, key=self._preference_key, reverse=True)
        return [(c.version, c.channel.value) for c in ordered]

    def _check_runtime_version(self, target_runtime_version: str) -> None:
        try:
            self.comparator.key(target_runtime_version)
        except ValueError as e:
            raise ConfigurationError(f"Invalid target runtime version {target_runtime_version!r}: {e}") from e

    def _parse_candidates(self, manifest: VersionManifest) -> List[VersionCandidate]:
        candidates = []
        for version, entry in manifest.versions.items():
            try:
                sort_key = self.comparator.key(version)
            except ValueError as e:
                raise ManifestMalformed(f"Manifest version id {version!r} is not a valid version: {e}") from e
            try:
                runtime_range = parse_range(entry.runtime, self.comparator)
            except ValueError as e:
                raise ManifestMalformed(f"Runtime range of version {version} is invalid: {e}") from e
            candidates.append(VersionCandidate(version, entry, sort_key, runtime_range))
        return candidates

    def _preference_key(self, candidate: VersionCandidate) -> tuple:
        return (
            candidate.sort_key,
            candidate.channel == self.release_channel,
            -candidate.channel.rank,
            candidate.version,
        )

    def _select_latest(self, candidates: List[VersionCandidate], runtime_version: str) -> VersionCandidate:
        compatible = [c for c in candidates if c.runtime_range.contains(runtime_version, self.comparator)]
        if not compatible:
            raise NoCompatibleVersion(
                f"No loader version supports runtime {runtime_version}",
                runtime_version=runtime_version,
            )
        in_channel = [c for c in compatible if c.channel.rank <= self.release_channel.rank]
        if in_channel:
            return max(in_channel, key=self._preference_key)

        fallback_rank = min(c.channel.rank for c in compatible)
        chosen = max((c for c in compatible if c.channel.rank == fallback_rank), key=self._preference_key)
        message = (
            f"No {self.release_channel.value} loader version supports runtime {runtime_version}, "
            f"falling back to {chosen.channel.value} version {chosen.version}"
        )
        if self.bus is not None:
            self.bus.warn(Phase.RESOLVE, message)
        else:
            self.logger.log(message, logging.WARNING)
        return chosen

    def _select_requested(
        self, candidates: List[VersionCandidate], runtime_version: str, requested: str
    ) -> VersionCandidate:
        matches = [c for c in candidates if c.version == requested]
        if not matches:
            try:
                requested_key = self.comparator.key(requested)
            except ValueError:
                requested_key = None
            matches = [c for c in candidates if requested_key is not None and c.sort_key == requested_key]
        if not matches:
            raise NoCompatibleVersion(
                f"Loader version {requested} is not listed in the manifest",
                runtime_version=runtime_version,
                requested_loader_version=requested,
            )

        chosen = max(matches, key=self._preference_key)
        if not chosen.runtime_range.contains(runtime_version, self.comparator):
            raise NoCompatibleVersion(
                f"Loader version {chosen.version} supports runtime {chosen.runtime_range}, "
                f"not {runtime_version}",
                runtime_version=runtime_version,
                requested_loader_version=requested,
            )
        return chosen

    def _build_plan(self, manifest: VersionManifest, chosen: VersionCandidate, runtime_version: str) -> InstallPlan:
        artifacts = []
        try:
            for reference in chosen.entry.artifacts:
                urls = manifest.artifact_urls(reference)
                if not urls:
                    raise ManifestMalformed(f"Artifact {reference.id} of version {chosen.version} has no source URLs")
                artifacts.append(
                    ArtifactDescriptor(
                        id=reference.id,
                        urls=tuple(urls),
                        checksum=Checksum(reference.checksum.algorithm, reference.checksum.digest),
                        size=reference.size,
                        path=normalise_relative_path(manifest.artifact_destination(reference)),
                        depends_on=tuple(reference.depends_on),
                        role=reference.role,
                    )
                )
            return InstallPlan(
                loader_version=chosen.version,
                runtime_version=runtime_version,
                artifacts=tuple(artifacts),
                entry_point=chosen.entry.main_class,
                jvm_args=tuple(chosen.entry.jvm_args),
                channel=chosen.channel.value,
            )
        except ValueError as e:
            raise ManifestMalformed(f"Manifest entry for version {chosen.version} is invalid: {e}") from e
