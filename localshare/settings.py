"""
Persisted device settings: the advertised alias and the listening port.
"""

import logging
import random
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from localshare.config import DEFAULT_PORT, SETTINGS_FILE
from localshare.discovery.models import Identity
from localshare.errors import SettingsError

logger = logging.getLogger(__name__)

ADJECTIVES = [
    "Neon", "Cosmic", "Turbo", "Silent", "Electric", "Quantum",
    "Hidden", "Mystic", "Clever", "Swift", "Brave", "Pixel",
    "Sneaky", "Bold", "Lucky", "Happy", "Fierce", "Calm"
]

ANIMALS = [
    "Fox", "Panda", "Gopher", "Bear", "Snail", "Owl",
    "Wolf", "Tiger", "Hawk", "Dolphin", "Penguin", "Falcon",
    "Eagle", "Lion", "Shark", "Whale", "Octopus", "Duck"
]


def generate_alias() -> str:
    """Random human-readable device name, e.g. "Swift Owl"."""
    return f"{random.choice(ADJECTIVES)} {random.choice(ANIMALS)}"


class AppSettings(BaseModel):
    alias: str = Field(default_factory=generate_alias, min_length=1)
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)

    def identity(self) -> Identity:
        return Identity(alias=self.alias, port=self.port)


class SettingsStore:
    """Loads and saves AppSettings as JSON."""

    def __init__(self, path: Path = SETTINGS_FILE) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> AppSettings:
        """Read settings, falling back to freshly generated defaults."""
        if self._path.exists():
            try:
                return AppSettings.model_validate_json(self._path.read_text())
            except (OSError, ValidationError) as e:
                logger.warning(f"Failed to load settings from {self._path}: {e}. Using defaults.")

        settings = AppSettings()
        try:
            self.save(settings)
        except SettingsError as e:
            logger.error(f"Failed to save default settings: {e}")
        return settings

    def save(self, settings: AppSettings) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(settings.model_dump_json(indent=2))
        except OSError as e:
            raise SettingsError(f"Failed to save settings: {e}") from e
