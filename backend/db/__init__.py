"""Price store database package for ORM models and migrations."""

from __future__ import annotations

import logging

from backend.db.base import Base
from backend.db import models

logger = logging.getLogger(__name__)

__all__ = ["Base", "models"]
