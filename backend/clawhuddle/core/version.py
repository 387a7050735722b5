"""Application name and version constants."""

from __future__ import annotations

APP_NAME = "clawhuddle-api"
APP_VERSION = "0.3.0"
