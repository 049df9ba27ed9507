"""Configuration module for the group synchronization job."""
from .settings import SyncConfig, load_settings

__all__ = ["SyncConfig", "load_settings"]
