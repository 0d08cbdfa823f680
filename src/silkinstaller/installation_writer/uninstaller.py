"""
Removal of installed loader files.

Only paths recorded in a committed launch descriptor are ever deleted; anything
else under the installation root belongs to the application.
"""

import logging
from typing import List, Optional

from silkinstaller.installer_logger import InstallerLogger
from silkinstaller.installer_utils import FileUtils
from silkinstaller.manifest_models import (
    InstallationTarget,
    InstallPlan,
    LaunchDescriptor,
    normalise_relative_path,
    read_launch_descriptor,
)


class Uninstaller:
    """
    Removes a profile's installation, or the leftovers of a previous one.
    """

    def __init__(self, logger: InstallerLogger) -> None:
        self.logger = logger

    def uninstall(self, target: InstallationTarget) -> List[str]:
        """
        Remove the files listed in the profile's launch descriptor, then the
        descriptor and the profile record.

        Returns:
            Relative paths of the removed artifact files

        Raises:
            BootstrapInconsistent: If the descriptor exists but is corrupt, so the
                installed files cannot be determined
        """
        descriptor = read_launch_descriptor(target.launch_descriptor_path)
        removed: List[str] = []
        if descriptor is None:
            self.logger.log(f"No installation recorded for profile {target.profile} in {target.root}", logging.INFO)
        else:
            for entry in descriptor.classpath:
                if self._remove_artifact(target, entry.path):
                    removed.append(entry.path)

        for state_file in (target.launch_descriptor_path, target.profile_path):
            if FileUtils.safe_unlink(state_file):
                self.logger.log(f"Removed {state_file}", logging.DEBUG)
            FileUtils.prune_empty_directories(state_file.parent, target.root)

        self.logger.log(
            f"Uninstalled profile {target.profile} from {target.root}, removed {len(removed)} file(s)", logging.INFO
        )
        return removed

    def prune_superseded(
        self, target: InstallationTarget, previous: Optional[LaunchDescriptor], plan: InstallPlan
    ) -> List[str]:
        """
        Remove artifacts of the ``previous`` descriptor that ``plan`` no longer uses.
        """
        if previous is None:
            return []
        keep = {normalise_relative_path(artifact.path).lower() for artifact in plan.artifacts}
        removed = []
        for entry in previous.classpath:
            if normalise_relative_path(entry.path).lower() in keep:
                continue
            if self._remove_artifact(target, entry.path):
                removed.append(entry.path)
        if removed:
            self.logger.log(f"Removed {len(removed)} artifact(s) of loader {previous.loader_version}", logging.INFO)
        return removed

    def _remove_artifact(self, target: InstallationTarget, relative_path: str) -> bool:
        try:
            path = target.resolve(relative_path)
        except ValueError as e:
            self.logger.log(f"Ignoring unsafe recorded path {relative_path!r}: {e}", logging.WARNING)
            return False
        if path.is_dir():
            self.logger.log(f"Recorded artifact {path} is a directory, leaving it in place", logging.WARNING)
            return False
        removed = FileUtils.safe_unlink(path)
        if removed:
            self.logger.log(f"Removed {path}", logging.DEBUG)
        FileUtils.prune_empty_directories(path.parent, target.root)
        return removed
