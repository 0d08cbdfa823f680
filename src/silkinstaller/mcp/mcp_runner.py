"""
MCP (Model Context Protocol) runner for the loader installer.

This module exposes the installation engine as MCP tools using the fastmcp
framework. It reads a ``silk.toml`` file in the workspace root to learn the
installation root, the target runtime version and the tuning options.

Tools:
1. resolve_loader_version - which loader version would be installed
2. install_loader - run the full installation pipeline
3. uninstall_loader - remove an installed profile
4. get_launch_command - the launch option line of an installed profile
5. find_game_directory - locate the game in the local Steam libraries
"""

import asyncio
import json
import logging
import os
from typing import Any, Dict, Optional

import requests
from fastmcp import FastMCP

from silkinstaller.game_finder import GameFinder
from silkinstaller.installer_config import CONFIG_EXAMPLE, InstallerConfig
from silkinstaller.installer_exceptions import ConfigurationError, InstallerException
from silkinstaller.installer_logger import InstallerLogger
from silkinstaller.installer_settings import CONFIG_FILE_NAME
from silkinstaller.loader_installer import LoaderInstaller


class MCPToolError(Exception):
    """Base exception for MCP tool errors."""

    pass


class MCPRunner:
    """
    MCP runner that exposes the installer as MCP tools using fastmcp.

    Workflow:
    - If silk.toml exists at startup: config is loaded immediately
    - If silk.toml is missing at startup: every tool checks for it at call time
      and answers with the expected schema while it is still missing

    Example usage:
    ```python
    runner = MCPRunner("/path/to/workspace")
    server = runner.create_mcp_server()
    server.run()
    ```
    """

    def __init__(
        self,
        workspace_root: Optional[str] = None,
        session: Optional[requests.Session] = None,
        game_finder: Optional[GameFinder] = None,
    ):
        """
        Initialize the MCP runner.

        Args:
            workspace_root: Directory holding silk.toml. If None, uses current directory.
            session: HTTP session shared by all installations
            game_finder: Steam library search used by find_game_directory
        """
        self.workspace_root = workspace_root or os.getcwd()
        self.logger = InstallerLogger()
        self.session = session or requests.Session()
        self.game_finder = game_finder or GameFinder(self.logger)
        self.config: Optional[InstallerConfig] = None

        self._try_load_config()

    @property
    def config_path(self) -> str:
        return os.path.join(self.workspace_root, CONFIG_FILE_NAME)

    def _try_load_config(self) -> None:
        """
        Attempt to load silk.toml, but don't fail if it is missing or invalid.
        """
        if not os.path.exists(self.config_path):
            return

        try:
            self.config = InstallerConfig.from_toml(
                self.config_path, overrides=InstallerConfig.env_overrides()
            ).ensure_valid()
            self.logger.log(
                f"Loaded installer configuration for {self.config.install_root}",
                logging.INFO,
            )
        except ConfigurationError as e:
            self.logger.log(f"Failed to load {self.config_path}: {e}", logging.ERROR)
            # Don't raise - let tools check at call time

    def _ensure_configured(self) -> bool:
        """
        Load silk.toml at tool call time if it was not available before.

        Returns:
            True if configured, False if still not configured
        """
        if self.config is None:
            self._try_load_config()
        return self.config is not None

    def get_configuration_error_message(self) -> str:
        return (
            "The installer is not configured.\n\n"
            f"Please create a '{CONFIG_FILE_NAME}' file in your workspace root with the following schema:\n\n"
            f"{CONFIG_EXAMPLE}"
        )

    def _not_configured(self) -> str:
        return json.dumps({"status": "error", "message": self.get_configuration_error_message()})

    def create_installer(self, **overrides: Any) -> LoaderInstaller:
        """
        Build a LoaderInstaller from the loaded configuration plus ``overrides``
        (snake_case option names). ``None`` overrides are ignored.

        Raises:
            MCPToolError: If the resulting configuration is invalid
        """
        if self.config is None:
            raise MCPToolError(self.get_configuration_error_message())
        changes = {key: value for key, value in overrides.items() if value is not None}
        try:
            config = self.config.with_overrides(**changes) if changes else self.config
            return LoaderInstaller(config, self.logger, session=self.session)
        except ConfigurationError as e:
            raise MCPToolError(f"Invalid installer configuration: {e}")

    @staticmethod
    def _error_payload(error: InstallerException) -> Dict[str, Any]:
        return {
            "status": "error",
            "error": type(error).__name__,
            "message": str(error),
            "retryable": error.retryable,
        }

    async def resolve_loader_version(
        self, target_runtime_version: Optional[str] = None, requested_loader_version: Optional[str] = None
    ) -> str:
        if not self._ensure_configured():
            return self._not_configured()

        installer = self.create_installer(
            target_runtime_version=target_runtime_version, requested_loader_version=requested_loader_version
        )
        try:
            plan = await asyncio.to_thread(installer.resolve)
        except InstallerException as e:
            return json.dumps(self._error_payload(e))

        return json.dumps(
            {
                "status": "success",
                "loaderVersion": plan.loader_version,
                "runtimeVersion": plan.runtime_version,
                "channel": plan.channel,
                "artifacts": [
                    {"id": a.id, "path": a.path, "size": a.size, "checksum": str(a.checksum)} for a in plan.artifacts
                ],
                "totalBytes": plan.total_bytes,
            }
        )

    async def list_loader_versions(
        self, target_runtime_version: Optional[str] = None, compatible_only: bool = True
    ) -> str:
        if not self._ensure_configured():
            return self._not_configured()

        installer = self.create_installer(target_runtime_version=target_runtime_version)
        runtime_version = installer.config.target_runtime_version if compatible_only else None
        try:
            versions = await asyncio.to_thread(installer.resolver.available_versions, runtime_version)
        except InstallerException as e:
            return json.dumps(self._error_payload(e))
        return json.dumps(
            {
                "status": "success",
                "runtimeVersion": runtime_version,
                "versions": [{"version": version, "channel": channel} for version, channel in versions],
            }
        )

    async def install_loader(
        self,
        target_runtime_version: Optional[str] = None,
        requested_loader_version: Optional[str] = None,
        profile: Optional[str] = None,
    ) -> str:
        if not self._ensure_configured():
            return self._not_configured()

        installer = self.create_installer(
            target_runtime_version=target_runtime_version,
            requested_loader_version=requested_loader_version,
            profile_name=profile,
        )
        result = await asyncio.to_thread(installer.run)
        payload = result.to_dict()
        if result.descriptor is not None:
            payload["launchCommand"] = installer.launch_command()
        return json.dumps(payload)

    async def uninstall_loader(self, profile: Optional[str] = None) -> str:
        if not self._ensure_configured():
            return self._not_configured()

        installer = self.create_installer(profile_name=profile)
        try:
            removed = await asyncio.to_thread(installer.uninstall)
        except InstallerException as e:
            return json.dumps(self._error_payload(e))
        return json.dumps({"status": "success", "profile": installer.target.profile, "removed": removed})

    async def get_launch_command(self, profile: Optional[str] = None) -> str:
        if not self._ensure_configured():
            return self._not_configured()

        installer = self.create_installer(profile_name=profile)
        try:
            command = installer.launch_command()
        except InstallerException as e:
            return json.dumps(self._error_payload(e))
        if command is None:
            return json.dumps(
                {"status": "error", "message": f"Profile {installer.target.profile} is not installed"}
            )
        return json.dumps({"status": "success", "profile": installer.target.profile, "launchCommand": command})

    async def find_game_directory(self) -> str:
        game_path = await asyncio.to_thread(self.game_finder.try_find_game)
        if game_path is None:
            return json.dumps({"status": "error", "message": "No Equilinox installation found"})
        return json.dumps({"status": "success", "path": str(game_path)})

    def create_mcp_server(self) -> FastMCP:
        """
        Create the fastmcp server with all installer tools registered.
        """
        server = FastMCP("silkinstaller")

        @server.tool()
        async def resolve_loader_version(
            target_runtime_version: Optional[str] = None, requested_loader_version: Optional[str] = None
        ) -> str:
            """Resolve which loader version would be installed for a runtime version.

            Args:
                target_runtime_version: Game version; defaults to the configured one
                requested_loader_version: Exact loader version, or omit for the latest stable
            """
            return await self.resolve_loader_version(target_runtime_version, requested_loader_version)

        @server.tool()
        async def list_loader_versions(
            target_runtime_version: Optional[str] = None, compatible_only: bool = True
        ) -> str:
            """List loader versions in the manifest, best first.

            Args:
                target_runtime_version: Game version; defaults to the configured one
                compatible_only: Only list versions that support the game version
            """
            return await self.list_loader_versions(target_runtime_version, compatible_only)

        @server.tool()
        async def install_loader(
            target_runtime_version: Optional[str] = None,
            requested_loader_version: Optional[str] = None,
            profile: Optional[str] = None,
        ) -> str:
            """Download, verify and install the loader into the configured installation root.

            Args:
                target_runtime_version: Game version; defaults to the configured one
                requested_loader_version: Exact loader version, or omit for the latest stable
                profile: Profile name; defaults to the configured one
            """
            return await self.install_loader(target_runtime_version, requested_loader_version, profile)

        @server.tool()
        async def uninstall_loader(profile: Optional[str] = None) -> str:
            """Remove the files installed for a profile.

            Args:
                profile: Profile name; defaults to the configured one
            """
            return await self.uninstall_loader(profile)

        @server.tool()
        async def get_launch_command(profile: Optional[str] = None) -> str:
            """Get the launch option line to paste into the game launcher.

            Args:
                profile: Profile name; defaults to the configured one
            """
            return await self.get_launch_command(profile)

        @server.tool()
        async def find_game_directory() -> str:
            """Locate the Equilinox installation in the local Steam libraries."""
            return await self.find_game_directory()

        return server


def main() -> None:
    MCPRunner().create_mcp_server().run()


__all__ = [
    "MCPRunner",
    "MCPToolError",
    "main",
]
