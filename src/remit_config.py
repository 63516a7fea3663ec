import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from element_decomposer import COMPOSITE_ELEMENTS
from remit_errors import SettingsError

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s:%(lineno)d] - %(message)s"


class LoaderSettings(BaseModel):
    """Runtime settings for the 835 loader. Every field has a usable default."""
    repetition_separator: str = Field("^", max_length=1)
    composite_separator: str = Field(":", max_length=1)
    composite_elements: Dict[str, Tuple[int, ...]] = Field(default_factory=lambda: dict(COMPOSITE_ELEMENTS))
    database_path: Optional[str] = None
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: '{value}'")
        return level

    @field_validator("composite_elements")
    @classmethod
    def _positive_indices(cls, value: Dict[str, Tuple[int, ...]]) -> Dict[str, Tuple[int, ...]]:
        for segment_name, indices in value.items():
            if any(index < 1 for index in indices):
                raise ValueError(f"Element indices for '{segment_name}' must be 1 or greater.")
        return value


def load_settings(
    path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> LoaderSettings:
    """
    Loads settings from a JSON file.

    Args:
        path: Location of the settings file. None returns the defaults.
        overrides: Values that replace the file's, e.g. from the command line.
            They are validated like the file's own values.

    Returns:
        LoaderSettings; defaults when the file does not exist.

    Raises:
        SettingsError: the file is not valid JSON, or the merged values fail validation.
    """
    settings_data: Dict[str, Any] = {}
    source = "defaults"
    if path is not None:
        settings_path = Path(path)
        if not settings_path.exists():
            logger.warning(f"Settings file does not exist: {settings_path}. Using defaults.")
        else:
            source = str(settings_path)
            try:
                with open(settings_path, "r") as f:
                    settings_data = json.load(f)
            except json.JSONDecodeError as e:
                logger.error(f"Failed to load settings {settings_path}: {e}")
                raise SettingsError(f"Invalid settings file {settings_path}: {e}") from e
            if not isinstance(settings_data, dict):
                raise SettingsError(f"Invalid settings file {settings_path}: expected a JSON object.")

    if overrides:
        settings_data = {**settings_data, **overrides}
        source = f"{source} with overrides for {', '.join(sorted(overrides))}"

    try:
        settings = LoaderSettings.model_validate(settings_data)
    except ValidationError as e:
        logger.error(f"Failed to load settings from {source}: {e}")
        raise SettingsError(f"Invalid settings from {source}: {e}") from e

    logger.info(f"Loaded settings from: {source}")
    return settings


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT, stream=sys.stdout, force=True)
