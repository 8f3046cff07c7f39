"""
Timeout constants for hostops.

Centralizes timeout values so procedures wait on external tools
consistently.
"""

from __future__ import annotations

# =============================================================================
# Subprocess Timeouts
# =============================================================================

# Default timeout for short queries (systemctl is-active, df, free, ...)
SUBPROCESS_DEFAULT_TIMEOUT_S = 30

# Archive and dump commands (tar, mysqldump, pg_dump, mongodump)
SUBPROCESS_LONG_TIMEOUT_S = 3600

# Package manager operations (apt clean, dnf autoremove, ...)
PACKAGE_MANAGER_TIMEOUT_S = 900

# =============================================================================
# Process termination
# =============================================================================

# Time allowed for a killed process group to be reaped
KILL_REAP_TIMEOUT_S = 5.0

# =============================================================================
# Service monitoring
# =============================================================================

# Pause after `systemctl restart` before re-checking the unit
SERVICE_RESTART_SETTLE_S = 5.0
