"""
Locates an Equilinox installation in the local Steam libraries, to suggest a
default installation root.
"""

import logging
import pathlib
import re
import string
import subprocess
from typing import Callable, List, Optional

from silkinstaller.installer_logger import InstallerLogger
from silkinstaller.installer_utils import OsFamily, PlatformUtils, unique_ordered

GAME_DIRECTORY_NAME = "Equilinox"
UNLOCK_LIST_FILE = "unlockList.dat"

_VDF_PATH_PATTERN = re.compile(r'^\s*"(?:path|[0-9]+)"\s+"([^"]+)"\s*$', re.IGNORECASE)
_REGISTRY_PATTERN = re.compile(r"^\s+SteamPath\s+REG_SZ\s+(.*)$")


def is_valid_game_path(game_path: Optional[pathlib.Path]) -> bool:
    """
    A game directory holds ``unlockList.dat`` and an ``Equilinox*UserConfigs.dat`` file.
    """
    if game_path is None:
        return False
    game_path = pathlib.Path(game_path)
    if not game_path.is_dir():
        return False
    if not (game_path / UNLOCK_LIST_FILE).is_file():
        return False
    try:
        return any(
            child.is_file() and child.name.startswith("Equilinox") and child.name.endswith("UserConfigs.dat")
            for child in game_path.iterdir()
        )
    except OSError:
        return False


def parse_library_folders(vdf_path: pathlib.Path, logger: Optional[InstallerLogger] = None) -> List[str]:
    """
    Extract the existing library directories listed in a Steam ``libraryfolders.vdf``.
    """
    vdf_path = pathlib.Path(vdf_path)
    if not vdf_path.is_file():
        return []
    try:
        lines = vdf_path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError as e:
        if logger:
            logger.log(f"Error reading VDF file {vdf_path}: {e}", logging.WARNING)
        return []

    paths = []
    for line in lines:
        match = _VDF_PATH_PATTERN.match(line.strip())
        if match:
            candidate = pathlib.Path(match.group(1).replace("\\\\", "\\"))
            if candidate.is_dir():
                paths.append(str(candidate))
    return paths


def read_steam_path_from_registry(logger: Optional[InstallerLogger] = None) -> Optional[str]:
    """
    Query ``HKCU\\Software\\Valve\\Steam`` for ``SteamPath``. Windows only.
    """
    try:
        completed = subprocess.run(
            ["reg", "query", r"HKCU\Software\Valve\Steam", "/v", "SteamPath"],
            capture_output=True,
            text=True,
            timeout=10,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as e:
        if logger:
            logger.log(f"Could not read Steam path from registry: {e}", logging.DEBUG)
        return None
    for line in completed.stdout.splitlines():
        match = _REGISTRY_PATTERN.match(line)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return None


class GameFinder:
    """
    Searches the usual Steam locations of the current platform.
    """

    def __init__(
        self,
        logger: Optional[InstallerLogger] = None,
        home: Optional[pathlib.Path] = None,
        os_family: Optional[OsFamily] = None,
        registry_reader: Callable[[Optional[InstallerLogger]], Optional[str]] = read_steam_path_from_registry,
    ) -> None:
        self.logger = logger or InstallerLogger()
        self.home = pathlib.Path(home) if home is not None else pathlib.Path.home()
        self.os_family = os_family or PlatformUtils.get_os_family()
        self.registry_reader = registry_reader

    def common_steam_directories(self) -> List[pathlib.Path]:
        paths: List[pathlib.Path] = []
        if self.os_family == OsFamily.WINDOWS:
            paths.append(pathlib.Path("C:\\Program Files (x86)\\Steam"))
            paths.append(pathlib.Path("C:\\Program Files\\Steam"))
            for drive in string.ascii_uppercase[3:]:
                paths.append(pathlib.Path(f"{drive}:\\SteamLibrary"))
                paths.append(pathlib.Path(f"{drive}:\\SteamGames"))
                paths.append(pathlib.Path(f"{drive}:\\Steam"))
            paths.append(pathlib.Path("C:\\ProgramData\\chocolatey\\lib\\steam-client"))
            paths.append(pathlib.Path("C:\\ProgramData\\scoop\\apps\\steam"))
        elif self.os_family == OsFamily.MACOS:
            paths.append(self.home / "Library" / "Application Support" / "Steam")
        elif self.os_family == OsFamily.LINUX:
            paths.append(self.home / ".steam" / "steam")
            paths.append(self.home / ".local" / "share" / "Steam")

        if self.os_family in (OsFamily.MACOS, OsFamily.LINUX):
            paths.append(self.home / "SteamLibrary")
        return paths

    def library_roots(self) -> List[str]:
        """
        Steam installation and library directories, most specific first.
        """
        steam_dirs: List[pathlib.Path] = []
        if self.os_family == OsFamily.WINDOWS:
            registry_path = self.registry_reader(self.logger)
            if registry_path:
                steam_dirs.append(pathlib.Path(registry_path))
        steam_dirs.extend(self.common_steam_directories())

        roots: List[str] = []
        for steam_dir in steam_dirs:
            if steam_dir.is_dir():
                roots.append(str(steam_dir))
                roots.extend(parse_library_folders(steam_dir / "steamapps" / "libraryfolders.vdf", self.logger))
        return unique_ordered(roots)

    def try_find_game(self) -> Optional[pathlib.Path]:
        """
        Returns:
            The Equilinox directory, or None if it cannot be found
        """
        scoop = self.home / "scoop" / "apps" / "steam" / "current" / "steamapps" / "common" / GAME_DIRECTORY_NAME
        if is_valid_game_path(scoop):
            return scoop

        for root in self.library_roots():
            game_path = pathlib.Path(root) / "steamapps" / "common" / GAME_DIRECTORY_NAME
            if is_valid_game_path(game_path):
                self.logger.log(f"Found {GAME_DIRECTORY_NAME} at {game_path}", logging.INFO)
                return game_path

        self.logger.log(f"No {GAME_DIRECTORY_NAME} installation found", logging.INFO)
        return None
