"""
silkinstaller resolves, downloads, verifies and installs the Silk loader into
an application's installation root and writes the launch descriptor the
runtime launcher starts it from.
"""

import logging

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())
