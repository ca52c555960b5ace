"""
dockrelease: build, scan, package and deploy a containerized application
in one fail-fast run, with guaranteed status notification.
"""

__version__ = "1.0.0"

import logging

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = ["__version__"]
