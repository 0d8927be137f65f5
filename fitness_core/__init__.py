# =============================================================================
# fitness_core/__init__.py
# Offline-First Fitness Data Core
# =============================================================================
"""
Local-first data layer for the fitness tracker: SQLite store, sync outbox,
background sync processor, connectivity monitor and workout analytics.
"""

__version__ = "1.0.0"
