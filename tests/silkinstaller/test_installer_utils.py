"""
Tests for file helpers, retry timing and the installer logger.
"""

import json
import logging

from silkinstaller.installer_logger import InstallerLogger
from silkinstaller.installer_utils import FileUtils, OsFamily, PlatformUtils, RetryPolicy, unique_ordered
from tests.fakes import sha1, sha256


class TestFileUtils:
    def test_compute_digest(self, tmp_path):
        path = tmp_path / "a.bin"
        path.write_bytes(b"payload")
        assert FileUtils.compute_digest(path) == sha256(b"payload")
        assert FileUtils.compute_digest(path, "SHA1") == sha1(b"payload")

    def test_file_matches(self, tmp_path):
        path = tmp_path / "a.bin"
        path.write_bytes(b"payload")
        assert FileUtils.file_matches(path, 7, "sha256", sha256(b"payload").upper())
        assert not FileUtils.file_matches(path, 8, "sha256", sha256(b"payload"))
        assert not FileUtils.file_matches(path, 7, "sha256", sha256(b"other"))
        assert not FileUtils.file_matches(tmp_path / "missing", 7, "sha256", sha256(b"payload"))

    def test_atomic_write_text_leaves_no_temporaries(self, tmp_path):
        path = tmp_path / "state" / "record.json"
        FileUtils.atomic_write_text(path, "{}")
        FileUtils.atomic_write_text(path, '{"a": 1}')
        assert path.read_text(encoding="utf-8") == '{"a": 1}'
        assert [p.name for p in path.parent.iterdir()] == ["record.json"]

    def test_safe_unlink(self, tmp_path):
        path = tmp_path / "a"
        path.write_text("x")
        assert FileUtils.safe_unlink(path)
        assert not FileUtils.safe_unlink(path)

    def test_prune_empty_directories_stops_at_root(self, tmp_path):
        nested = tmp_path / "a" / "b" / "c"
        nested.mkdir(parents=True)
        (tmp_path / "a" / "keep.txt").write_text("x")
        FileUtils.prune_empty_directories(nested, tmp_path)
        assert not (tmp_path / "a" / "b").exists()
        assert (tmp_path / "a").exists()

        FileUtils.prune_empty_directories(tmp_path, tmp_path)
        assert tmp_path.exists()

    def test_remove_tree(self, tmp_path):
        tree = tmp_path / "tree"
        (tree / "sub").mkdir(parents=True)
        (tree / "sub" / "f").write_text("x")
        FileUtils.remove_tree(tree)
        assert not tree.exists()
        FileUtils.remove_tree(tree)

    def test_is_within_directory(self, tmp_path):
        assert FileUtils.is_within_directory(tmp_path, tmp_path / "a" / "b")
        assert not FileUtils.is_within_directory(tmp_path / "a", tmp_path / "b")


class TestRetryPolicy:
    def test_exponential_delays_are_capped(self):
        policy = RetryPolicy(base_delay=0.5, max_delay=3.0, factor=2.0)
        assert [policy.delay_for(n) for n in range(0, 6)] == [0.0, 0.5, 1.0, 2.0, 3.0, 3.0]

    def test_wait_uses_sleep_function(self):
        slept = []
        RetryPolicy(base_delay=1.0, sleep=slept.append).wait(3)
        assert slept == [4.0]

    def test_zero_delay_does_not_sleep(self):
        slept = []
        RetryPolicy(base_delay=0.0, sleep=slept.append).wait(1)
        assert slept == []


class TestPlatformUtils:
    def test_classpath_separator(self):
        assert PlatformUtils.classpath_separator(OsFamily.WINDOWS) == ";"
        assert PlatformUtils.classpath_separator(OsFamily.LINUX) == ":"
        assert PlatformUtils.classpath_separator(OsFamily.MACOS) == ":"

    def test_unique_ordered(self):
        assert unique_ordered(["b", "a", "b", "c", "a"]) == ["b", "a", "c"]


class TestInstallerLogger:
    def test_emits_json_record_with_caller(self, caplog):
        logger = InstallerLogger("silkinstaller.test")
        with caplog.at_level(logging.INFO, logger="silkinstaller.test"):
            logger.log("Downloaded 'asm'\nfrom mirror", logging.INFO, "network trouble")

        record = json.loads(caplog.records[-1].getMessage())
        assert record["level"] == "INFO"
        assert record["caller_name"] == "test_emits_json_record_with_caller"
        assert record["caller_file"] == "test_installer_utils.py"
        assert record["message"] == 'Downloaded "asm" from mirror (network trouble)'

    def test_disabled_level_is_skipped(self, caplog):
        logger = InstallerLogger("silkinstaller.quiet")
        with caplog.at_level(logging.ERROR, logger="silkinstaller.quiet"):
            logger.log("ignored", logging.DEBUG)
        assert caplog.records == []
