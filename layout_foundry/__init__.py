"""
Layout Foundry

Artifact lifecycle layer for split design images and packaged modules.
"""

import importlib.metadata

__version__ = importlib.metadata.version("layout-foundry")

from .errors import LayoutFoundryError
from .imaging.crops import ImageCropService
from .ingest import IngestionService
from .storage.signing import SignedAccessService
from .versions.store import ModuleVersionStore

__all__ = [
    "ImageCropService",
    "IngestionService",
    "LayoutFoundryError",
    "ModuleVersionStore",
    "SignedAccessService",
]
