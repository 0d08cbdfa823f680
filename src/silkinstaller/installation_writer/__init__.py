"""
Atomic commit of verified artifacts into the installation target, and their
removal.
"""

from .uninstaller import Uninstaller
from .writer import CommitReport, InstallationWriter, TransactionEntry

__all__ = [
    "CommitReport",
    "InstallationWriter",
    "TransactionEntry",
    "Uninstaller",
]
