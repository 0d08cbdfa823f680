"""
Commits verified, staged artifacts into the installation target.

Every file becomes visible at its final path through a single atomic rename:
the staged bytes are copied to a temporary sibling of the destination,
flushed to disk and then ``os.replace``-d over the destination.
"""

import logging
import os
import pathlib
import shutil
import tempfile
import uuid
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from silkinstaller.installer_exceptions import InstallationIncomplete, InstallCancelled
from silkinstaller.installer_logger import InstallerLogger
from silkinstaller.installer_utils import CHUNK_SIZE, FileUtils
from silkinstaller.manifest_models import DownloadResult, InstallationTarget
from silkinstaller.progress import Phase, ProgressBus, ProgressEvent


@dataclass
class TransactionEntry:
    """
    One completed rename. ``backup`` holds the previous contents when rollback
    is enabled and the destination already existed.
    """

    artifact_id: str
    relative_path: str
    destination: pathlib.Path
    created: bool
    backup: Optional[pathlib.Path] = None


@dataclass
class CommitReport:
    committed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    transactions: List[TransactionEntry] = field(default_factory=list)


class InstallationWriter:
    """
    Writes a set of download results into an installation target.

    Completed renames are kept on failure unless ``rollback_on_failure`` is set,
    in which case they are reverted in reverse order on a best-effort basis.
    """

    def __init__(
        self,
        logger: InstallerLogger,
        bus: Optional[ProgressBus] = None,
        rollback_on_failure: bool = False,
        replace: Callable[[str, str], None] = os.replace,
    ) -> None:
        self.logger = logger
        self.bus = bus or ProgressBus(logger)
        self.rollback_on_failure = rollback_on_failure
        self._replace = replace

    def commit(
        self,
        results: Sequence[DownloadResult],
        target: InstallationTarget,
        before_first_write: Optional[Callable[[], None]] = None,
    ) -> CommitReport:
        """
        Commit ``results`` into ``target``.

        Args:
            results: Verified download results; skipped ones are not rewritten
            target: The installation target
            before_first_write: Called once, after the first cancellation check
                and before the first file is renamed into place

        Returns:
            CommitReport listing committed and skipped relative paths

        Raises:
            InstallationIncomplete: If a file could not be committed. Lists the
                committed, failed (not committed) and skipped paths.
            InstallCancelled: If cancellation was observed between two files
        """
        unverified = [r.descriptor.id for r in results if not r.verified or (r.staged_path is None and not r.skipped)]
        if unverified:
            raise ValueError(f"Refusing to commit unverified artifacts: {', '.join(unverified)}")

        self.bus.phase(Phase.WRITE, f"Committing {len(results)} artifact(s) into {target.root}")
        report = CommitReport()
        pending = [r for r in results if not r.skipped]
        report.skipped = [r.descriptor.path for r in results if r.skipped]

        for position, result in enumerate(pending):
            relative_path = result.descriptor.path
            try:
                self.bus.cancellation.raise_if_cancelled()
            except InstallCancelled:
                self.logger.log(
                    f"Cancelled after committing {len(report.committed)} of {len(pending)} file(s)", logging.WARNING
                )
                if self.rollback_on_failure:
                    self._rollback(report.transactions, target)
                raise

            if position == 0 and before_first_write is not None:
                before_first_write()

            try:
                entry = self._commit_file(result, target)
            except OSError as e:
                failed = [r.descriptor.path for r in pending[position:]]
                self.logger.log(f"Failed to commit {relative_path}: {e}", logging.ERROR)
                rolled_back = False
                if self.rollback_on_failure:
                    rolled_back = self._rollback(report.transactions, target)
                error = InstallationIncomplete(
                    f"Installation incomplete: committed {len(report.committed)} file(s), "
                    f"{len(failed)} not committed ({relative_path}: {e})",
                    committed=[] if rolled_back else list(report.committed),
                    failed=failed,
                    skipped=list(report.skipped),
                    rolled_back=rolled_back,
                )
                self.bus.error(Phase.WRITE, error, artifact_id=result.descriptor.id)
                raise error from e

            report.transactions.append(entry)
            report.committed.append(relative_path)
            self.bus.publish(
                ProgressEvent(
                    phase=Phase.WRITE,
                    artifact_id=result.descriptor.id,
                    bytes_done=result.descriptor.size,
                    bytes_total=result.descriptor.size,
                    message=f"Committed {relative_path} ({len(report.committed)}/{len(pending)})",
                )
            )

        for entry in report.transactions:
            if entry.backup is not None:
                FileUtils.safe_unlink(entry.backup)
                entry.backup = None

        self.logger.log(
            f"Committed {len(report.committed)} file(s), {len(report.skipped)} already up to date",
            logging.INFO,
        )
        return report

    def _commit_file(self, result: DownloadResult, target: InstallationTarget) -> TransactionEntry:
        destination = target.resolve(result.descriptor.path)
        destination.parent.mkdir(parents=True, exist_ok=True)
        created = not destination.exists()

        backup = None
        if self.rollback_on_failure and not created:
            backup = destination.with_name(f".{destination.name}.{uuid.uuid4().hex}.bak")
            shutil.copy2(destination, backup)

        fd, tmp_name = tempfile.mkstemp(prefix=f".{destination.name}.", suffix=".tmp", dir=str(destination.parent))
        try:
            with os.fdopen(fd, "wb") as out, open(result.staged_path, "rb") as source:
                shutil.copyfileobj(source, out, CHUNK_SIZE)
                out.flush()
                os.fsync(out.fileno())
            self._replace(tmp_name, str(destination))
        except BaseException:
            FileUtils.safe_unlink(tmp_name)
            if backup is not None:
                FileUtils.safe_unlink(backup)
            raise
        FileUtils.fsync_directory(destination.parent)

        self.logger.log(f"Committed {result.descriptor.id} to {destination}", logging.DEBUG)
        return TransactionEntry(
            artifact_id=result.descriptor.id,
            relative_path=result.descriptor.path,
            destination=destination,
            created=created,
            backup=backup,
        )

    def _rollback(self, transactions: List[TransactionEntry], target: InstallationTarget) -> bool:
        """
        Revert ``transactions`` newest first. Returns True if every entry was reverted.
        """
        complete = True
        for entry in reversed(transactions):
            try:
                if entry.backup is not None:
                    os.replace(entry.backup, entry.destination)
                    entry.backup = None
                elif entry.created:
                    FileUtils.safe_unlink(entry.destination)
                    FileUtils.prune_empty_directories(entry.destination.parent, target.root)
            except OSError as e:
                complete = False
                self.logger.log(f"Could not roll back {entry.destination}: {e}", logging.ERROR)
        self.logger.log(
            f"Rolled back {len(transactions)} committed file(s)" + ("" if complete else " with errors"),
            logging.WARNING,
        )
        return complete
