"""
Runtime launcher.

Runs at every application start, long after the installer has exited, so it
depends on the standard library only and never touches the network. It reads
the committed launch descriptor, checks it, and replaces the current process
with the loader's JVM.
"""

import json
import logging
import os
import pathlib
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

from silkinstaller.installer_exceptions import BootstrapInconsistent
from silkinstaller.installer_settings import DEFAULT_JAVA_EXECUTABLE, DEFAULT_PROFILE_NAME, InstallerSettings

LOGGER = logging.getLogger(__name__)

SUPPORTED_FORMAT_VERSIONS = (1,)


@dataclass(frozen=True)
class LaunchSpec:
    """Validated contents of a launch descriptor, with absolute classpath entries."""

    root: pathlib.Path
    profile: str
    loader_version: str
    entry_point: str
    classpath: Tuple[str, ...]
    jvm_args: Tuple[str, ...] = ()


def _require(document: dict, key: str, expected: type, path: pathlib.Path) -> Any:
    value = document.get(key)
    if not isinstance(value, expected) or (isinstance(value, bool) and expected is not bool):
        raise BootstrapInconsistent(
            f"Launch descriptor {path} has an invalid or missing '{key}'", descriptor_path=str(path)
        )
    return value


def _resolve_entry(root: pathlib.Path, relative: str, path: pathlib.Path) -> pathlib.Path:
    candidate = relative.replace("\\", "/")
    parts = [part for part in candidate.split("/") if part not in ("", ".")]
    if candidate.startswith("/") or ":" in candidate or ".." in parts or not parts:
        raise BootstrapInconsistent(
            f"Launch descriptor {path} lists an unsafe classpath entry {relative!r}", descriptor_path=str(path)
        )
    return root.joinpath(*parts)


def load_launch_descriptor(root: Any, profile: str = DEFAULT_PROFILE_NAME) -> LaunchSpec:
    """
    Read and validate the launch descriptor of ``profile`` under ``root``.

    Raises:
        BootstrapInconsistent: If the descriptor is missing, unreadable, does
            not match the expected format, or lists a classpath entry that is
            not present on disk
    """
    root = pathlib.Path(root)
    path = InstallerSettings.get_launch_descriptor_path(root, profile)
    if not path.is_file():
        raise BootstrapInconsistent(
            f"No committed installation for profile {profile!r}: {path} does not exist", descriptor_path=str(path)
        )
    try:
        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f)
    except (OSError, ValueError) as e:
        raise BootstrapInconsistent(f"Launch descriptor {path} cannot be read: {e}", descriptor_path=str(path)) from e

    if not isinstance(document, dict):
        raise BootstrapInconsistent(f"Launch descriptor {path} is not a JSON object", descriptor_path=str(path))
    if _require(document, "formatVersion", int, path) not in SUPPORTED_FORMAT_VERSIONS:
        raise BootstrapInconsistent(
            f"Launch descriptor {path} has unsupported format {document['formatVersion']}", descriptor_path=str(path)
        )
    entry_point = _require(document, "entryPoint", str, path)
    loader_version = _require(document, "loaderVersion", str, path)
    entries = _require(document, "classpath", list, path)
    jvm_args = document.get("jvmArgs", [])
    if not isinstance(jvm_args, list) or not all(isinstance(arg, str) for arg in jvm_args):
        raise BootstrapInconsistent(f"Launch descriptor {path} has invalid 'jvmArgs'", descriptor_path=str(path))
    if not entry_point.strip() or not entries:
        raise BootstrapInconsistent(
            f"Launch descriptor {path} has no entry point or classpath", descriptor_path=str(path)
        )

    classpath: List[str] = []
    for entry in entries:
        if not isinstance(entry, dict) or not isinstance(entry.get("path"), str):
            raise BootstrapInconsistent(f"Launch descriptor {path} has a malformed classpath entry", descriptor_path=str(path))
        resolved = _resolve_entry(root, entry["path"], path)
        if not resolved.is_file():
            raise BootstrapInconsistent(f"Classpath entry {resolved} is missing", descriptor_path=str(path))
        size = entry.get("size")
        if isinstance(size, int) and not isinstance(size, bool) and resolved.stat().st_size != size:
            raise BootstrapInconsistent(f"Classpath entry {resolved} has an unexpected size", descriptor_path=str(path))
        classpath.append(str(resolved))

    return LaunchSpec(
        root=root,
        profile=profile,
        loader_version=loader_version,
        entry_point=entry_point,
        classpath=tuple(classpath),
        jvm_args=tuple(jvm_args),
    )


def build_command(
    spec: LaunchSpec,
    java: str = DEFAULT_JAVA_EXECUTABLE,
    jvm_flags: Sequence[str] = (),
    app_args: Sequence[str] = (),
) -> List[str]:
    """
    ``[java, *descriptor JVM args, *jvm_flags, -cp, <classpath>, <entry point>, *app_args]``
    """
    return [
        java,
        *spec.jvm_args,
        *jvm_flags,
        "-cp",
        os.pathsep.join(spec.classpath),
        spec.entry_point,
        *app_args,
    ]


def launch(
    root: Any,
    profile: str = DEFAULT_PROFILE_NAME,
    java: str = DEFAULT_JAVA_EXECUTABLE,
    jvm_flags: Sequence[str] = (),
    app_args: Sequence[str] = (),
    execvp: Optional[Callable[[str, List[str]], Any]] = None,
) -> Any:
    """
    Validate the descriptor and replace the current process with the loader.
    Only returns when ``execvp`` is a substitute that returns.
    """
    spec = load_launch_descriptor(root, profile)
    command = build_command(spec, java=java, jvm_flags=jvm_flags, app_args=app_args)
    LOGGER.info("Launching loader %s: %s", spec.loader_version, command)
    os.chdir(spec.root)
    return (execvp or os.execvp)(command[0], command)
