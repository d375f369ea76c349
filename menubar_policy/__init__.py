"""Menu Bar Policy Daemon

Event-driven menu bar visibility management.

This package provides a long-running daemon that:
- Keeps a live view of the focused application's menu bar policy
- Keeps a live view of the system-wide menu bar policy
- Applies user selections optimistically and rolls back failed writes
- Reconciles both views when preferences change underneath it

License: MIT
Version: 1.0.0
"""

__version__ = "1.0.0"
