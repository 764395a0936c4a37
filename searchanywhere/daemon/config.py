"""Configuration management for SearchAnywhere."""

from pathlib import Path
from typing import Dict, List, Optional

import yaml
from loguru import logger
from pydantic import BaseModel, Field, field_validator

DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "searchanywhere"


class PathsConfig(BaseModel):
    data_dir: Path = DEFAULT_DATA_DIR
    scan_root: Path = Path.home()
    # Relative paths are resolved against data_dir
    database: Path = Path("files.db")
    temp_dir: Path = Path("tmp")
    history_log: Path = Path("history.jsonl")

    @field_validator("data_dir", "scan_root")
    @classmethod
    def expand_user(cls, v: Path) -> Path:
        return Path(v).expanduser()

    def resolve(self, path: Path) -> Path:
        path = Path(path).expanduser()
        return path if path.is_absolute() else self.data_dir / path

    @property
    def database_path(self) -> Path:
        return self.resolve(self.database)

    @property
    def temp_path(self) -> Path:
        return self.resolve(self.temp_dir)

    @property
    def history_path(self) -> Path:
        return self.resolve(self.history_log)


class IndexConfig(BaseModel):
    reindex_on_startup: bool = True


class HistoryConfig(BaseModel):
    max_entries_per_kind: int = 200

    @field_validator("max_entries_per_kind")
    @classmethod
    def validate_cap(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_entries_per_kind must be at least 1")
        return v


class AppsConfig(BaseModel):
    desktop_dirs: List[Path] = Field(default_factory=lambda: [
        Path("/usr/share/applications"),
        Path("/usr/local/share/applications"),
        Path.home() / ".local" / "share" / "applications",
    ])


class SettingsConfig(BaseModel):
    # field name -> command, e.g. ACTION_PRINTERS_SETTINGS: "gnome-control-center printers"
    extra: Dict[str, str] = Field(default_factory=dict)


class PerformanceConfig(BaseModel):
    io_workers: int = 4
    compute_workers: int = 2
    message_capacity: int = 1

    @field_validator("io_workers", "compute_workers", "message_capacity")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v


class Config(BaseModel):
    """Main configuration for SearchAnywhere."""

    paths: PathsConfig = Field(default_factory=PathsConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    apps: AppsConfig = Field(default_factory=AppsConfig)
    settings: SettingsConfig = Field(default_factory=SettingsConfig)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)

    @staticmethod
    def default_locations() -> List[Path]:
        return [
            Path("searchanywhere.yaml"),
            Path.home() / ".config" / "searchanywhere" / "config.yaml",
            Path("/etc/searchanywhere/config.yaml"),
        ]

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from YAML file, falling back to defaults."""
        if config_path is None:
            for candidate in cls.default_locations():
                if candidate.exists():
                    config_path = candidate
                    break
            else:
                logger.info("No config file found, using defaults")
                return cls()

        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    def save(self, config_path: Path) -> None:
        """Save configuration to YAML file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False)
