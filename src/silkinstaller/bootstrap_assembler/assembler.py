"""
Builds the launch descriptor of a committed installation.
"""

import logging
import pathlib
import zipfile
from datetime import datetime, timezone
from typing import Callable, Optional

from silkinstaller.installer_exceptions import BootstrapInconsistent
from silkinstaller.installer_logger import InstallerLogger
from silkinstaller.installer_settings import DEFAULT_JAVA_EXECUTABLE, DEFAULT_MAIN_CLASS
from silkinstaller.installer_utils import FileUtils, OsFamily, PlatformUtils
from silkinstaller.manifest_models import (
    ARTIFACT_ROLE_LOADER,
    ClasspathEntry,
    InstallationTarget,
    InstallPlan,
    LaunchDescriptor,
    ProfileRecord,
)
from silkinstaller.progress import Phase, ProgressBus

JAR_MANIFEST_PATH = "META-INF/MANIFEST.MF"


def read_main_class(jar_path: pathlib.Path) -> Optional[str]:
    """
    Read the ``Main-Class`` attribute from a jar's manifest.

    Returns:
        The class name, or None if the jar has no manifest or no Main-Class
    """
    try:
        with zipfile.ZipFile(jar_path) as jar:
            if JAR_MANIFEST_PATH not in jar.namelist():
                return None
            content = jar.read(JAR_MANIFEST_PATH).decode("utf-8", errors="replace")
    except (OSError, zipfile.BadZipFile):
        return None

    # Manifest lines are wrapped at 72 bytes; continuations start with one space
    logical_lines = []
    for line in content.splitlines():
        if line.startswith(" ") and logical_lines:
            logical_lines[-1] += line[1:]
        else:
            logical_lines.append(line)

    for line in logical_lines:
        name, sep, value = line.partition(":")
        if sep and name.strip().lower() == "main-class":
            return value.strip() or None
    return None


class BootstrapAssembler:
    """
    Orders the committed artifacts into a classpath, determines the entry point
    and writes the profile record and, as the very last step, the launch
    descriptor.
    """

    def __init__(
        self,
        logger: InstallerLogger,
        bus: Optional[ProgressBus] = None,
        java_executable: str = DEFAULT_JAVA_EXECUTABLE,
        os_family: Optional[OsFamily] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.logger = logger
        self.bus = bus or ProgressBus(logger)
        self.java_executable = java_executable
        self.os_family = os_family
        self.now = now

    def assemble(self, plan: InstallPlan, target: InstallationTarget) -> LaunchDescriptor:
        """
        Produce and commit the launch descriptor for ``plan``.

        Args:
            plan: The installed plan
            target: The installation target the plan was committed into

        Returns:
            The committed LaunchDescriptor

        Raises:
            BootstrapInconsistent: If a classpath entry is missing from the target
        """
        self.bus.phase(Phase.BOOTSTRAP, f"Assembling launch descriptor for profile {target.profile}")

        ordered = plan.dependency_order()
        for artifact in ordered:
            path = target.resolve(artifact.path)
            if not path.is_file():
                raise BootstrapInconsistent(
                    f"Classpath entry {artifact.id} is missing at {path}",
                    descriptor_path=str(target.launch_descriptor_path),
                )
            if path.stat().st_size != artifact.size:
                raise BootstrapInconsistent(
                    f"Classpath entry {artifact.id} at {path} has an unexpected size",
                    descriptor_path=str(target.launch_descriptor_path),
                )

        timestamp = self.now().isoformat()
        descriptor = LaunchDescriptor(
            profile=target.profile,
            loaderVersion=plan.loader_version,
            runtimeVersion=plan.runtime_version,
            entryPoint=self.determine_entry_point(plan, target),
            classpath=[
                ClasspathEntry(id=a.id, path=a.path, checksum=str(a.checksum), size=a.size) for a in ordered
            ],
            jvmArgs=list(plan.jvm_args),
            createdAt=timestamp,
        )
        profile = ProfileRecord(
            profile=target.profile,
            loaderVersion=plan.loader_version,
            runtimeVersion=plan.runtime_version,
            channel=plan.channel,
            installedAt=timestamp,
            launchCommand=self.render_launch_command(descriptor),
        )

        FileUtils.atomic_write_text(target.profile_path, profile.to_json())
        FileUtils.atomic_write_text(target.launch_descriptor_path, descriptor.to_json())

        self.logger.log(
            f"Wrote launch descriptor {target.launch_descriptor_path} with {len(descriptor.classpath)} "
            f"classpath entries, entry point {descriptor.entry_point}",
            logging.INFO,
        )
        return descriptor

    def determine_entry_point(self, plan: InstallPlan, target: InstallationTarget) -> str:
        """
        The manifest's main class if declared, else the loader jar's Main-Class,
        else the default loader entry point.
        """
        if plan.entry_point:
            return plan.entry_point
        for artifact in plan.artifacts:
            if artifact.role == ARTIFACT_ROLE_LOADER:
                main_class = read_main_class(target.resolve(artifact.path))
                if main_class:
                    return main_class
                self.logger.log(
                    f"{artifact.path} declares no Main-Class, using {DEFAULT_MAIN_CLASS}", logging.WARNING
                )
                break
        return DEFAULT_MAIN_CLASS

    def render_launch_command(self, descriptor: LaunchDescriptor, os_family: Optional[OsFamily] = None) -> str:
        """
        Render the launch-option line a game launcher such as Steam runs from the
        installation root, e.g.
        ``java -cp "silk-loader.jar:lib/fabric-loader.jar" de.rhm176.loader.Main %command%``.
        """
        separator = PlatformUtils.classpath_separator(os_family or self.os_family)
        classpath = separator.join(descriptor.classpath_paths())
        parts = [self.java_executable, *descriptor.jvm_args, "-cp", f'"{classpath}"', descriptor.entry_point, "%command%"]
        return " ".join(parts)
