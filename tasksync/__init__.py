"""Task synchronization and merge engine for Task Master projects."""

__version__ = "1.0.0"
