"""
Logger for the installer. Every log line is emitted as a small JSON record
describing where it was logged from.
"""

import inspect
import logging
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

LOGGER_NAME = "silkinstaller"


class LogLine(BaseModel):
    """
    Represents a line in the installer log
    """

    time: str
    level: str
    caller_file: str
    caller_name: str
    caller_line: int
    message: str


class InstallerLogger:
    """
    Logger class used by every component of the installation engine.

    Handlers and output policy belong to the host application; this class
    only shapes the records.
    """

    def __init__(self, name: str = LOGGER_NAME, level: Optional[int] = None) -> None:
        self.logger = logging.getLogger(name)
        if level is not None:
            self.logger.setLevel(level)

    def log(self, debug_message: str, level: int, sanitized_error_message: str = "") -> None:
        """
        Log the debug and sanitized messages using the logger

        Args:
            debug_message: Full message, may contain paths and URLs
            level: A ``logging`` level such as ``logging.INFO``
            sanitized_error_message: Optional short message safe to show a user
        """
        if not self.logger.isEnabledFor(level):
            return

        debug_message = debug_message.replace("'", '"').replace("\n", " ")
        sanitized_error_message = sanitized_error_message.replace("'", '"').replace("\n", " ")

        # Collect details about the callee
        curframe = inspect.currentframe()
        calframe = inspect.getouterframes(curframe, 2)
        caller_file = calframe[1][1].replace("\\", "/").split("/")[-1]
        caller_line = calframe[1][2]
        caller_name = calframe[1][3]

        message = debug_message
        if sanitized_error_message:
            message = f"{debug_message} ({sanitized_error_message})"

        debug_log_line = LogLine(
            time=str(datetime.now()),
            level=logging.getLevelName(level),
            caller_file=caller_file,
            caller_name=caller_name,
            caller_line=caller_line,
            message=message,
        )

        self.logger.log(level=level, msg=debug_log_line.model_dump_json())
