from .core import (
    APISettings,
    DatabaseSettings,
    LedgerSettings,
    LoggingSettings,
    RatingSettings,
    Settings,
    load_settings,
    sanitize_dict,
    _project_root,
    _data_dir,
)

__all__ = [
    "APISettings",
    "DatabaseSettings",
    "LedgerSettings",
    "LoggingSettings",
    "RatingSettings",
    "Settings",
    "load_settings",
    "sanitize_dict",
    "_project_root",
    "_data_dir",
]
