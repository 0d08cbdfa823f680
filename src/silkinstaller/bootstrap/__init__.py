"""
Dependency-free runtime launcher. Nothing in this package may import a
third-party library.
"""

from .launcher import LaunchSpec, build_command, launch, load_launch_descriptor

__all__ = ["LaunchSpec", "build_command", "launch", "load_launch_descriptor"]
