# =============================================================================
# fitness_core/offline/__init__.py
# Offline-First Architecture for the Fitness Tracker
# =============================================================================
"""
Offline-First Architecture Module

The local store is the source of truth. Every write lands in SQLite first and
is visible immediately; writes to syncable tables also append to an outbox
that a background processor replays to the remote backend when online.

Architecture:
------------
┌─────────────────────────────────────────────────────────────────┐
│                    OFFLINE-FIRST ARCHITECTURE                    │
├─────────────────────────────────────────────────────────────────┤
│                                                                  │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │                 FitnessDataService                        │  │
│   │         (Single API - the UI uses this only)              │  │
│   └──────────────────────────────────────────────────────────┘  │
│                            │  one transaction                    │
│              ┌─────────────┴─────────────┐                      │
│              ▼                           ▼                      │
│   ┌──────────────────┐        ┌──────────────────┐             │
│   │  LocalDatabase   │        │   OutboxQueue    │             │
│   │    (SQLite)      │        │  (sync_queue)    │             │
│   └──────────────────┘        └──────────────────┘             │
│                                          │                       │
│   ┌──────────────────┐        ┌──────────▼───────┐             │
│   │ ConnectionMonitor│───────►│  SyncProcessor   │             │
│   │ (Online/Offline) │  gate  │ (Auto Background)│             │
│   └──────────────────┘        └──────────────────┘             │
│                                          │                       │
│                               ┌──────────▼───────┐             │
│                               │  RemoteBackend   │             │
│                               │ (Supabase / REST)│             │
│                               └──────────────────┘             │
└─────────────────────────────────────────────────────────────────┘

Usage:
------
from fitness_core.offline import create_data_service

service = create_data_service(start=True)

service.add_workout_session(session)

print(service.is_online)      # True/False
print(service.queue_length)   # Number of pending outbox entries
"""

from fitness_core.offline.connection_manager import (
    ConnectionMonitor,
    ConnectionState,
    ConnectionStatus,
)

from fitness_core.offline.local_database import LocalDatabase

from fitness_core.offline.models import (
    BodyMeasurement,
    Goal,
    Gym,
    OutboxEntry,
    OutboxOperation,
    SetLog,
    TPath,
    TPathExercise,
    TPathProgress,
    TPathWithExercises,
    UserAchievement,
    WorkoutSession,
    WorkoutTemplate,
)

from fitness_core.offline.remote_backend import (
    RemoteBackend,
    RestBackend,
    SupabaseBackend,
    create_backend,
)

from fitness_core.offline.sync_queue import OutboxQueue

from fitness_core.offline.sync_engine import (
    DrainResult,
    SyncProcessor,
    SyncState,
    SyncStatus,
)

from fitness_core.offline.unified_data_service import (
    FitnessDataService,
    create_data_service,
)

__all__ = [
    # Connectivity
    "ConnectionMonitor",
    "ConnectionState",
    "ConnectionStatus",
    # Local Store
    "LocalDatabase",
    # Records
    "BodyMeasurement",
    "Goal",
    "Gym",
    "OutboxEntry",
    "OutboxOperation",
    "SetLog",
    "TPath",
    "TPathExercise",
    "TPathProgress",
    "TPathWithExercises",
    "UserAchievement",
    "WorkoutSession",
    "WorkoutTemplate",
    # Remote
    "RemoteBackend",
    "RestBackend",
    "SupabaseBackend",
    "create_backend",
    # Outbox & Sync
    "OutboxQueue",
    "DrainResult",
    "SyncProcessor",
    "SyncState",
    "SyncStatus",
    # Data Service (Main API)
    "FitnessDataService",
    "create_data_service",
]
