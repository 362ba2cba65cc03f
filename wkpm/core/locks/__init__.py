from wkpm.core.locks.manager import LockInfo, LockManager

__all__ = ["LockInfo", "LockManager"]
