"""Gentoo desktop installer (phase-based, resumable).

Core design goals:
- Ordered phases, each skipped once recorded as completed
- Pre-flight checks before the disk is touched
- Post-install audit with a persisted report
- Centralized logging
"""

__all__ = []
