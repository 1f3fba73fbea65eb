"""Version information for the Contribution Tracker service."""

import os

__version__ = "1.0.0"

# Stamped by the deployment pipeline; unset in local runs.
__build_date__ = os.getenv("BUILD_DATE") or None
__commit_sha__ = os.getenv("COMMIT_SHA") or None
