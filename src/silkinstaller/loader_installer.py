"""
This file contains the main interface of the installer: :class:`LoaderInstaller`
runs resolution, download, commit and bootstrap assembly as one pipeline.
"""

import logging
import pathlib
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import requests
from pydantic import ValidationError

from silkinstaller.bootstrap_assembler import BootstrapAssembler
from silkinstaller.download_manager import DownloadManager
from silkinstaller.installation_writer import InstallationWriter, Uninstaller
from silkinstaller.installer_config import InstallerConfig
from silkinstaller.installer_exceptions import (
    BootstrapInconsistent,
    ConfigurationError,
    DownloadFailed,
    InstallationIncomplete,
    InstallCancelled,
    InstallerException,
    IntegrityViolation,
    ManifestMalformed,
    ManifestUnavailable,
    NoCompatibleVersion,
)
from silkinstaller.installer_logger import InstallerLogger
from silkinstaller.installer_settings import DEFAULT_JAVA_EXECUTABLE, InstallerSettings
from silkinstaller.installer_utils import FileUtils, RetryPolicy
from silkinstaller.manifest_models import (
    DownloadResult,
    InstallationTarget,
    InstallPlan,
    LaunchDescriptor,
    ProfileRecord,
    read_launch_descriptor,
)
from silkinstaller.progress import Phase, ProgressBus
from silkinstaller.version_resolver import (
    ManifestCache,
    ManifestSource,
    VersionResolver,
    create_manifest_source,
)
from silkinstaller.versioning import get_comparator


class InstallStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class InstallResult:
    """
    Structured outcome of :meth:`LoaderInstaller.run`.
    """

    status: InstallStatus
    profile: str
    loader_version: Optional[str] = None
    runtime_version: Optional[str] = None
    descriptor: Optional[LaunchDescriptor] = None
    error: Optional[BaseException] = None
    downloaded: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == InstallStatus.SUCCEEDED

    @property
    def retryable(self) -> bool:
        return self.error is not None and bool(getattr(self.error, "retryable", False))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "profile": self.profile,
            "loaderVersion": self.loader_version,
            "runtimeVersion": self.runtime_version,
            "downloaded": list(self.downloaded),
            "skipped": list(self.skipped),
            "removed": list(self.removed),
            "error": None if self.error is None else {"type": type(self.error).__name__, "message": str(self.error)},
            "retryable": self.retryable,
        }


class LoaderInstaller:
    """
    The LoaderInstaller class wires the installation stages together for one
    installation target.

    Usage::

        config = InstallerConfig.from_dict({"targetRuntimeVersion": "1.2", "installRoot": "/games/Equilinox"})
        result = LoaderInstaller(config).run()
    """

    def __init__(
        self,
        config: InstallerConfig,
        logger: Optional[InstallerLogger] = None,
        bus: Optional[ProgressBus] = None,
        session: Optional[requests.Session] = None,
        manifest_source: Optional[ManifestSource] = None,
        manifest_cache: Optional[ManifestCache] = None,
        sleep: Optional[Callable[[float], Any]] = None,
        java_executable: str = DEFAULT_JAVA_EXECUTABLE,
    ) -> None:
        """
        Args:
            config: Validated on construction
            logger: Logger shared by every stage
            bus: Progress bus; a private one is created if omitted
            session: HTTP session shared by manifest and artifact transfers
            manifest_source: Overrides the source derived from ``config.manifest_url``
            manifest_cache: Cache collaborator for the resolver
            sleep: Backoff sleep function; defaults to waiting on the bus'
                cancellation token so a cancel interrupts the backoff

        Raises:
            ConfigurationError: If ``config`` is invalid
        """
        self.config = config.ensure_valid()
        self.logger = logger or InstallerLogger()
        self.bus = bus or ProgressBus(self.logger)
        self.session = session or requests.Session()
        self.target = InstallationTarget(pathlib.Path(config.install_root), config.profile_name)

        retry_policy = RetryPolicy(
            max_attempts=config.max_retry_attempts,
            base_delay=config.backoff_base_delay,
            max_delay=config.backoff_max_delay,
            sleep=sleep or self.bus.cancellation.wait,
        )
        self.source = manifest_source or create_manifest_source(
            config.manifest_url,
            self.logger,
            session=self.session,
            timeout=config.attempt_timeout,
            retry_policy=retry_policy,
            cancellation=self.bus.cancellation,
        )
        self.resolver = VersionResolver(
            self.source,
            self.logger,
            comparator=get_comparator(config.version_scheme),
            release_channel=config.release_channel,
            cache=manifest_cache,
            bus=self.bus,
        )
        self.downloader = DownloadManager(
            self.logger,
            bus=self.bus,
            session=self.session,
            max_concurrent_downloads=config.max_concurrent_downloads,
            retry_policy=retry_policy,
            attempt_timeout=config.attempt_timeout,
            plan_timeout=config.plan_timeout,
            progress_interval=config.progress_interval,
        )
        self.writer = InstallationWriter(self.logger, bus=self.bus, rollback_on_failure=config.rollback_on_failure)
        self.assembler = BootstrapAssembler(self.logger, bus=self.bus, java_executable=java_executable)
        self.uninstaller = Uninstaller(self.logger)

    def resolve(self) -> InstallPlan:
        return self.resolver.resolve(self.config.target_runtime_version, self.config.requested_loader_version)

    def install(self) -> InstallResult:
        """
        Run the whole pipeline and raise the typed error of the first stage that fails.

        Returns:
            InstallResult with status SUCCEEDED
        """
        self.logger.log(
            f"Installing loader for runtime {self.config.target_runtime_version} into {self.target.root} "
            f"(profile {self.target.profile})",
            logging.INFO,
        )
        plan = self.resolve()
        previous = self._read_previous_descriptor()

        staging_dir = self._create_staging_dir()
        try:
            results = self.downloader.download(plan, self.target, staging_dir)
            report = self.writer.commit(
                results, self.target, before_first_write=lambda: self._invalidate_previous(previous, results)
            )
            self.bus.cancellation.raise_if_cancelled()
            descriptor = self.assembler.assemble(plan, self.target)
        finally:
            FileUtils.remove_tree(staging_dir, self.logger)
            FileUtils.prune_empty_directories(staging_dir.parent, self.target.root)

        removed = self.uninstaller.prune_superseded(self.target, previous, plan)
        self.logger.log(
            f"Installed loader {plan.loader_version} for runtime {plan.runtime_version}: "
            f"{len(report.committed)} file(s) written, {len(report.skipped)} already up to date",
            logging.INFO,
        )
        return InstallResult(
            status=InstallStatus.SUCCEEDED,
            profile=self.target.profile,
            loader_version=plan.loader_version,
            runtime_version=plan.runtime_version,
            descriptor=descriptor,
            downloaded=list(report.committed),
            skipped=list(report.skipped),
            removed=removed,
        )

    def run(self) -> InstallResult:
        """
        Like :meth:`install`, but reports failures and cancellation in the result.
        """
        try:
            return self.install()
        except InstallCancelled as e:
            self.logger.log(f"Installation cancelled: {e}", logging.WARNING)
            return InstallResult(status=InstallStatus.CANCELLED, profile=self.target.profile, error=e)
        except InstallerException as e:
            self.logger.log(f"Installation failed: {type(e).__name__}: {e}", logging.ERROR)
            self.bus.error(self._phase_of(e), e)
            return InstallResult(status=InstallStatus.FAILED, profile=self.target.profile, error=e)

    def uninstall(self) -> List[str]:
        return self.uninstaller.uninstall(self.target)

    def cancel(self, reason: str = "Installation cancelled") -> None:
        self.bus.cancel(reason)

    def read_profile(self) -> Optional[ProfileRecord]:
        """
        Return the installed profile record, or None if the profile is not installed.
        """
        path = self.target.profile_path
        if not path.is_file():
            return None
        try:
            return ProfileRecord.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            raise BootstrapInconsistent(f"Profile record {path} is corrupt: {e}", descriptor_path=str(path)) from e

    def launch_command(self) -> Optional[str]:
        profile = self.read_profile()
        return None if profile is None else profile.launch_command

    def _read_previous_descriptor(self) -> Optional[LaunchDescriptor]:
        try:
            return read_launch_descriptor(self.target.launch_descriptor_path)
        except BootstrapInconsistent as e:
            self.logger.log(f"Ignoring previous installation record: {e}", logging.WARNING)
            return None

    def _invalidate_previous(self, previous: Optional[LaunchDescriptor], results: List[DownloadResult]) -> None:
        """
        Drop the previous launch descriptor before any of its files is overwritten.
        """
        if previous is None:
            return
        in_use = {path.lower() for path in previous.classpath_paths()}
        if any(not r.skipped and r.descriptor.path.lower() in in_use for r in results):
            self.logger.log(
                f"Removing launch descriptor of loader {previous.loader_version}, its files are being replaced",
                logging.INFO,
            )
            FileUtils.safe_unlink(self.target.launch_descriptor_path)

    def _create_staging_dir(self) -> pathlib.Path:
        if self.config.staging_root:
            staging_root = pathlib.Path(self.config.staging_root)
        else:
            staging_root = InstallerSettings.get_staging_root(self.target.root)
        staging_dir = staging_root / f"run-{uuid.uuid4().hex}"
        staging_dir.mkdir(parents=True, exist_ok=False)
        return staging_dir

    @staticmethod
    def _phase_of(error: BaseException) -> Phase:
        if isinstance(error, (ManifestUnavailable, ManifestMalformed, NoCompatibleVersion, ConfigurationError)):
            return Phase.RESOLVE
        if isinstance(error, (DownloadFailed, IntegrityViolation)):
            return Phase.DOWNLOAD
        if isinstance(error, InstallationIncomplete):
            return Phase.WRITE
        return Phase.BOOTSTRAP
