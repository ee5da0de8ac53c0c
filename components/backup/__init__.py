from .backup_service import (
    MANIFEST_FILENAME,
    BackupDescriptor,
    BackupError,
    BackupFailedError,
    BackupService,
    BackupVerification,
    InvalidBackupError,
    RestoreFailedError,
    format_size,
    is_backup,
)

__all__ = [
    "MANIFEST_FILENAME",
    "BackupDescriptor",
    "BackupError",
    "BackupFailedError",
    "BackupService",
    "BackupVerification",
    "InvalidBackupError",
    "RestoreFailedError",
    "format_size",
    "is_backup",
]
