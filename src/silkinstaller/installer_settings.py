"""
Defines the on-disk layout the installer produces inside an installation target
and other fixed settings.
"""

import pathlib

DEFAULT_MANIFEST_URL = "https://meta.silkloader.dev/v1/loader/manifest.json"
DEFAULT_PROFILE_NAME = "default"
DEFAULT_MAIN_CLASS = "de.rhm176.loader.Main"
DEFAULT_JAVA_EXECUTABLE = "java"
CONFIG_FILE_NAME = "silk.toml"
ENV_PREFIX = "SILK_"


class InstallerSettings:
    """
    Provides the paths used inside an installation root.

    Layout::

        <root>/lib/...                        artifacts, as declared by the manifest
        <root>/.silk/profiles/<profile>.json  installed version record
        <root>/.silk/launch/<profile>.json    launch descriptor, written last
        <root>/.silk/staging/run-<id>/        per-run staging, always removed
    """

    state_dir_name = ".silk"
    library_dir_name = "lib"

    @staticmethod
    def get_state_directory(root: pathlib.Path) -> pathlib.Path:
        return pathlib.Path(root) / InstallerSettings.state_dir_name

    @staticmethod
    def get_staging_root(root: pathlib.Path) -> pathlib.Path:
        return InstallerSettings.get_state_directory(root) / "staging"

    @staticmethod
    def get_launch_descriptor_path(root: pathlib.Path, profile: str) -> pathlib.Path:
        return InstallerSettings.get_state_directory(root) / "launch" / f"{profile}.json"

    @staticmethod
    def get_profile_path(root: pathlib.Path, profile: str) -> pathlib.Path:
        return InstallerSettings.get_state_directory(root) / "profiles" / f"{profile}.json"
