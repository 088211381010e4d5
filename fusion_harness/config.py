import json
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

from .utils.logger import logger as custom_logger


@dataclass
class HarnessConfig:
    """
    Run-wide settings of the harness.

    Loaded from a JSON file whose keys match the field names; keyword
    overrides given to from_json() take precedence over the file.

    Config file format (JSON):
      {
        "timeout": 300,
        "startup_timeout": 120,
        "isolate": true,
        "report_stages": false,
        "disabled_patterns": ["T=bfloat16"],
        "log_file": "harness.log",
        "log_level": "INFO",
        "summary_path": "ops_summary.json"
      }
    """

    timeout: float = 300.0
    startup_timeout: float = 120.0
    isolate: bool = True
    report_stages: bool = False
    disabled_patterns: List[str] = field(default_factory=list)
    log_file: Optional[str] = None
    log_level: str = "INFO"
    summary_path: Optional[str] = None

    @classmethod
    def from_json(cls, path: Optional[str] = None, **overrides) -> "HarnessConfig":
        config = cls()
        if path:
            with open(path, "r") as f:
                config._apply_config(json.load(f))
        config._apply_config({k: v for k, v in overrides.items() if v is not None})
        return config

    def _apply_config(self, config: Dict[str, Any]):
        """Merges configuration dict into instance attributes."""
        known = {f.name for f in fields(self)}
        for key, value in config.items():
            if key not in known:
                custom_logger.warning(f"Ignoring unknown config key: {key}")
                continue
            if key == "disabled_patterns":
                value = list(value)
            setattr(self, key, value)
