"""Orchestration of long-running provider jobs.

This package coordinates externally executed work:
- bounded-concurrency batch execution with per-item and global deadlines
- polling monitors for single provider jobs
- aggregate batch status for API clients
"""

__version__ = "1.0.0"
