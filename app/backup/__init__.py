"""
Backup module for dbkeeper.

This module handles the core database backup functionality including:
- Artifact naming, listing and atomic publish (BackupStore)
- The pg_dumpall | gzip pipeline (DumpPipeline)
- Retention sweeps (RetentionCleaner)
- Execution orchestration (BackupExecutor)
"""

from .executor import BackupExecutor, JobStatus
from .pipeline import ConnectionParams, DumpPipeline, PipelineResult
from .policy import RetentionPolicy, InvalidPolicyError, validate_cron_expression
from .retention import RetentionCleaner
from .store import BackupStore, StorageError

__all__ = [
    'BackupExecutor',
    'JobStatus',
    'ConnectionParams',
    'DumpPipeline',
    'PipelineResult',
    'RetentionPolicy',
    'InvalidPolicyError',
    'validate_cron_expression',
    'RetentionCleaner',
    'BackupStore',
    'StorageError'
]
