from wkpm.core.backup.manager import BackupManager

__all__ = ["BackupManager"]
