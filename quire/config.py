"""Configuration for Quire with validation."""

from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field, ValidationError, field_validator, ConfigDict
import structlog
import toml

log = structlog.get_logger()

# Model aliases accepted in agent frontmatter
DEFAULT_MODELS = ["sonnet", "opus", "haiku", "inherit"]

# Tools an agent may request in its frontmatter
DEFAULT_TOOLS = [
    "Bash",
    "BashOutput",
    "Edit",
    "Glob",
    "Grep",
    "KillShell",
    "LS",
    "MultiEdit",
    "NotebookEdit",
    "NotebookRead",
    "Read",
    "SlashCommand",
    "Task",
    "TodoWrite",
    "WebFetch",
    "WebSearch",
    "Write",
]

DEFAULT_IGNORE = ["node_modules/**", "**/node_modules/**", "venv/**", ".venv/**"]

USER_CONFIG = Path("~/.quire/config.toml")


class QuireConfig(BaseModel):
    """Main configuration for Quire with validation."""

    model_config = ConfigDict(validate_assignment=True)

    # Paths
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".quire")
    install_dir: Path = Field(default_factory=lambda: Path.home() / ".claude")

    # Linting
    strict: bool = False
    check_links: bool = True
    known_models: list[str] = Field(default_factory=lambda: list(DEFAULT_MODELS))
    known_tools: list[str] = Field(default_factory=lambda: list(DEFAULT_TOOLS))
    ignore: list[str] = Field(default_factory=lambda: list(DEFAULT_IGNORE))

    # Logging
    log_level: str = Field(default="WARNING", pattern="^(DEBUG|INFO|WARNING|ERROR)$")
    log_file: Optional[Path] = None

    @field_validator('known_models', 'known_tools', 'ignore')
    @classmethod
    def strip_entries(cls, v):
        return [item.strip() for item in v if item and item.strip()]

    def model_post_init(self, __context):
        """Expand user paths after initialization."""
        self.data_dir = Path(self.data_dir).expanduser()
        self.install_dir = Path(self.install_dir).expanduser()

    @property
    def index_dir(self) -> Path:
        """Directory holding the install index."""
        return self.data_dir

    @staticmethod
    def find(path: Optional[str] = None) -> Optional[Path]:
        """Locate the config file that load() would read.

        Search order if path not provided:
        1. ./quire.toml (project-specific)
        2. ~/.quire/config.toml (user default)
        """
        if path is not None:
            return Path(path).expanduser()
        for candidate in (Path("quire.toml"), USER_CONFIG.expanduser()):
            if candidate.exists():
                log.info("config_found", path=str(candidate))
                return candidate
        return None

    @classmethod
    def load(cls, path: Optional[str] = None) -> 'QuireConfig':
        """Load configuration from TOML file.

        Args:
            path: Optional explicit config file path (searched when omitted)

        Returns:
            QuireConfig instance
        """
        found = cls.find(path)
        path = str(found) if found else None

        if path and Path(path).exists():
            try:
                data = toml.load(path)
            except (toml.TomlDecodeError, OSError) as e:
                log.error("config_load_failed", path=path, error=str(e))
                return cls()

            # Allow the settings to live under a [quire] table
            if "quire" in data and isinstance(data["quire"], dict):
                data = data["quire"]

            try:
                config = cls(**data)
            except ValidationError as e:
                log.error("config_invalid", path=path, error=str(e))
                return cls()

            log.info("config_loaded", path=path)
            return config

        log.info("config_using_defaults")
        return cls()

    def save(self, path: str):
        """Save configuration to TOML file.

        Args:
            path: File path to save to
        """
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            data = self.model_dump(mode='json', exclude_none=True)
            toml.dump(data, f)
        log.info("config_saved", path=path)


def validate_config(config: QuireConfig) -> list[str]:
    """Validate configuration and return warnings.

    Args:
        config: Config to validate

    Returns:
        List of warning messages
    """
    warnings = []

    if not config.known_models:
        warnings.append("known_models is empty: every agent model will be reported")

    if not config.known_tools:
        warnings.append("known_tools is empty: every agent tool will be reported")

    try:
        config.data_dir.mkdir(parents=True, exist_ok=True)
        test_file = config.data_dir / ".write_test"
        test_file.touch()
        test_file.unlink()
    except OSError as e:
        warnings.append(f"Data directory not writable: {e}")

    if config.install_dir.exists() and not config.install_dir.is_dir():
        warnings.append(f"Install directory is not a directory: {config.install_dir}")

    return warnings
