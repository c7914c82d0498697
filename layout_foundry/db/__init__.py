"""
Database package for Layout Foundry.
"""

from .base import Base, get_db, get_engine, get_session_local, init_database
from .models import (
    AssetModel,
    ReviewFeedbackModel,
    SplitModel,
    TestRunModel,
    UploadModel,
    ValidationRecordModel,
)
from .version_models import ModuleVersionModel

__all__ = [
    "Base",
    "get_db",
    "get_engine",
    "get_session_local",
    "init_database",
    "AssetModel",
    "ModuleVersionModel",
    "ReviewFeedbackModel",
    "SplitModel",
    "TestRunModel",
    "UploadModel",
    "ValidationRecordModel",
]
