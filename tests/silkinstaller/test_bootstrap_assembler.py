"""
Tests for the bootstrap assembler.
"""

import json
import zipfile
from datetime import datetime, timezone

import pytest

from silkinstaller.bootstrap_assembler import BootstrapAssembler, read_main_class
from silkinstaller.installer_exceptions import BootstrapInconsistent
from silkinstaller.installer_logger import InstallerLogger
from silkinstaller.installer_settings import DEFAULT_MAIN_CLASS
from silkinstaller.installer_utils import OsFamily
from silkinstaller.manifest_models import (
    ArtifactDescriptor,
    Checksum,
    InstallationTarget,
    InstallPlan,
    read_launch_descriptor,
)
from tests.fakes import sha256

FIXED_NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _write_jar(path, manifest=None):
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as jar:
        if manifest is not None:
            jar.writestr("META-INF/MANIFEST.MF", manifest)
        jar.writestr("de/rhm176/loader/Main.class", b"\xca\xfe\xba\xbe")
    return path


def _installed(target, artifact_id, path, role="library", depends_on=(), manifest=None):
    file_path = target.resolve(path)
    if role == "loader":
        _write_jar(file_path, manifest)
    else:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_bytes(artifact_id.encode())
    body = file_path.read_bytes()
    return ArtifactDescriptor(
        id=artifact_id,
        urls=(f"https://a.invalid/{artifact_id}.jar",),
        checksum=Checksum("sha256", sha256(body)),
        size=len(body),
        path=path,
        depends_on=tuple(depends_on),
        role=role,
    )


@pytest.fixture
def target(tmp_path):
    return InstallationTarget(tmp_path / "game", "modded")


@pytest.fixture
def assembler():
    return BootstrapAssembler(InstallerLogger(), os_family=OsFamily.LINUX, now=lambda: FIXED_NOW)


class TestReadMainClass:
    def test_reads_main_class(self, tmp_path):
        jar = _write_jar(tmp_path / "a.jar", "Manifest-Version: 1.0\r\nMain-Class: org.example.Main\r\n")
        assert read_main_class(jar) == "org.example.Main"

    def test_joins_continuation_lines(self, tmp_path):
        jar = _write_jar(tmp_path / "a.jar", "Manifest-Version: 1.0\nMain-Class: org.example.very.long.packa\n ge.Main\n")
        assert read_main_class(jar) == "org.example.very.long.package.Main"

    def test_missing_manifest_or_attribute(self, tmp_path):
        assert read_main_class(_write_jar(tmp_path / "a.jar")) is None
        assert read_main_class(_write_jar(tmp_path / "b.jar", "Manifest-Version: 1.0\n")) is None

    def test_not_a_jar(self, tmp_path):
        path = tmp_path / "broken.jar"
        path.write_bytes(b"not a zip")
        assert read_main_class(path) is None


class TestBootstrapAssembler:
    """Tests for BootstrapAssembler.assemble."""

    def test_classpath_follows_dependency_order(self, target, assembler):
        loader = _installed(target, "silk-loader", "silk-loader.jar", role="loader", depends_on=["fabric"])
        fabric = _installed(target, "fabric", "lib/fabric.jar", depends_on=["asm"])
        asm = _installed(target, "asm", "lib/asm.jar")
        plan = InstallPlan("2.3.0", "1.2", (loader, fabric, asm), entry_point="de.rhm176.loader.Main")

        descriptor = assembler.assemble(plan, target)

        assert descriptor.classpath_paths() == ["lib/asm.jar", "lib/fabric.jar", "silk-loader.jar"]
        assert descriptor.profile == "modded"
        assert descriptor.created_at == FIXED_NOW.isoformat()
        assert read_launch_descriptor(target.launch_descriptor_path) == descriptor

    def test_descriptor_and_profile_are_camel_case(self, target, assembler):
        loader = _installed(target, "silk-loader", "silk-loader.jar", role="loader")
        plan = InstallPlan("2.3.0", "1.2", (loader,), jvm_args=("-Xmx2G",))

        assembler.assemble(plan, target)

        descriptor = json.loads(target.launch_descriptor_path.read_text(encoding="utf-8"))
        assert descriptor["formatVersion"] == 1
        assert descriptor["loaderVersion"] == "2.3.0"
        assert descriptor["jvmArgs"] == ["-Xmx2G"]
        assert descriptor["classpath"][0]["checksum"] == str(loader.checksum)
        profile = json.loads(target.profile_path.read_text(encoding="utf-8"))
        assert profile["runtimeVersion"] == "1.2"
        assert profile["launchCommand"] == 'java -Xmx2G -cp "silk-loader.jar" de.rhm176.loader.Main %command%'

    def test_entry_point_from_loader_jar(self, target, assembler):
        loader = _installed(
            target, "silk-loader", "silk-loader.jar", role="loader", manifest="Main-Class: org.example.Boot\n"
        )
        plan = InstallPlan("2.3.0", "1.2", (loader,))
        assert assembler.assemble(plan, target).entry_point == "org.example.Boot"

    def test_declared_entry_point_wins(self, target, assembler):
        loader = _installed(
            target, "silk-loader", "silk-loader.jar", role="loader", manifest="Main-Class: org.example.Boot\n"
        )
        plan = InstallPlan("2.3.0", "1.2", (loader,), entry_point="org.example.Declared")
        assert assembler.assemble(plan, target).entry_point == "org.example.Declared"

    def test_default_entry_point(self, target, assembler):
        plan = InstallPlan("2.3.0", "1.2", (_installed(target, "asm", "lib/asm.jar"),))
        assert assembler.assemble(plan, target).entry_point == DEFAULT_MAIN_CLASS

    def test_missing_entry_is_inconsistent(self, target, assembler):
        asm = _installed(target, "asm", "lib/asm.jar")
        target.resolve("lib/asm.jar").unlink()
        with pytest.raises(BootstrapInconsistent):
            assembler.assemble(InstallPlan("2.3.0", "1.2", (asm,)), target)
        assert not target.launch_descriptor_path.exists()

    def test_wrong_size_is_inconsistent(self, target, assembler):
        asm = _installed(target, "asm", "lib/asm.jar")
        target.resolve("lib/asm.jar").write_bytes(b"longer than before")
        with pytest.raises(BootstrapInconsistent):
            assembler.assemble(InstallPlan("2.3.0", "1.2", (asm,)), target)

    def test_reassembly_replaces_descriptor(self, target, assembler):
        asm = _installed(target, "asm", "lib/asm.jar")
        assembler.assemble(InstallPlan("2.2.0", "1.2", (asm,)), target)
        assembler.assemble(InstallPlan("2.3.0", "1.2", (asm,)), target)
        assert read_launch_descriptor(target.launch_descriptor_path).loader_version == "2.3.0"
        assert sorted(p.name for p in target.launch_descriptor_path.parent.iterdir()) == ["modded.json"]


class TestRenderLaunchCommand:
    def test_platform_separator(self, target, assembler):
        plan = InstallPlan(
            "2.3.0",
            "1.2",
            (_installed(target, "asm", "lib/asm.jar"), _installed(target, "mixin", "lib/mixin.jar")),
        )
        descriptor = assembler.assemble(plan, target)
        assert assembler.render_launch_command(descriptor) == (
            f'java -cp "lib/asm.jar:lib/mixin.jar" {DEFAULT_MAIN_CLASS} %command%'
        )
        assert assembler.render_launch_command(descriptor, OsFamily.WINDOWS) == (
            f'java -cp "lib/asm.jar;lib/mixin.jar" {DEFAULT_MAIN_CLASS} %command%'
        )

    def test_custom_java_executable(self, target):
        assembler = BootstrapAssembler(InstallerLogger(), java_executable="/opt/jdk/bin/java", os_family=OsFamily.LINUX)
        descriptor = assembler.assemble(InstallPlan("2.3.0", "1.2", (_installed(target, "asm", "lib/asm.jar"),)), target)
        assert assembler.render_launch_command(descriptor).startswith('/opt/jdk/bin/java -cp "lib/asm.jar"')
