import logging
import os
from io import TextIOBase
from typing import Final, Optional

import yaml
from pydantic import BaseModel, Field

from .reference import DEFAULT_BASELINE_FREQUENCY

logger: logging.Logger = logging.getLogger(__name__)

# If set, the configuration file used when none is specified.
CONFIG_PATH_ENV: Final[str] = "DPB1_EPITOPE_CONFIG"

DEFAULT_MATCH_PRECISION: Final[float] = float(
    os.environ.get("DPB1_EPITOPE_MATCH_PRECISION", 0.01)
)
DEFAULT_BASELINE_ALLELE_FREQUENCY: Final[float] = float(
    os.environ.get("DPB1_EPITOPE_BASELINE_FREQUENCY", DEFAULT_BASELINE_FREQUENCY)
)


class MatchConfig(BaseModel):
    """
    Settings for the match service.

    Reference data paths left unset fall back to the data bundled with the
    package.
    """

    match_probability_precision: float = Field(
        default=DEFAULT_MATCH_PRECISION, gt=0.0, le=1.0
    )
    baseline_allele_frequency: float = Field(
        default=DEFAULT_BASELINE_ALLELE_FREQUENCY, ge=0.0, le=1.0
    )
    immune_groups_path: Optional[str] = None
    frequencies_path: Optional[str] = None
    g_groups_path: Optional[str] = None
    apply_g_groups: bool = True

    @classmethod
    def from_yaml(cls, config_io: TextIOBase) -> "MatchConfig":
        config_dict: Optional[dict] = yaml.safe_load(config_io)
        return cls.model_validate(config_dict or {})

    def resolve_paths(self, base_dir: str) -> "MatchConfig":
        """
        Return a copy of this configuration with relative data paths made
        relative to base_dir.
        """
        updates: dict[str, str] = {}
        for field_name in ("immune_groups_path", "frequencies_path", "g_groups_path"):
            path: Optional[str] = getattr(self, field_name)
            if path is not None and not os.path.isabs(path):
                updates[field_name] = os.path.join(base_dir, path)
        return self.model_copy(update=updates)

    @classmethod
    def load(cls, path: Optional[str] = None) -> "MatchConfig":
        """
        Load the configuration from a YAML file.

        If no path is given, the file named by the DPB1_EPITOPE_CONFIG
        environment variable is used; if that isn't set either, the defaults
        are used.
        """
        if path is None:
            path = os.environ.get(CONFIG_PATH_ENV)
        if path is None:
            return cls()

        logger.info(f"Reading configuration from {path}....")
        with open(path) as f:
            config: MatchConfig = cls.from_yaml(f)
        return config.resolve_paths(os.path.dirname(os.path.abspath(path)))
