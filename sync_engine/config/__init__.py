"""Configuration for the sync engine."""

from .settings import Settings, JobDefaults, StorageCfg, SearchCfg, ServerCfg, load_settings

__all__ = ["Settings", "JobDefaults", "StorageCfg", "SearchCfg", "ServerCfg", "load_settings"]
