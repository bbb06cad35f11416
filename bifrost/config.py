"""Configuration for Bifrost with validation."""

from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
import structlog
import toml

log = structlog.get_logger()

DEFAULT_PORT_START = 8990
DEFAULT_PORT_END = 9100
MCP_SUBPROTOCOLS = ["mcp", "mcp-v1"]


class ServerConfig(BaseModel):
    """WebSocket server configuration."""
    host: str = "127.0.0.1"
    port_start: int = Field(gt=0, lt=65536, default=DEFAULT_PORT_START)
    port_end: int = Field(gt=0, lt=65536, default=DEFAULT_PORT_END)
    subprotocols: list[str] = Field(default_factory=lambda: list(MCP_SUBPROTOCOLS))
    max_message_bytes: int = Field(gt=0, default=1024 * 1024)

    # Discovery
    write_lockfile: bool = True
    lock_dir: Path = Field(default_factory=lambda: Path.home() / ".claude" / "ide")
    ide_name: str = "Bifrost"
    verify_auth_token: bool = False

    @model_validator(mode="after")
    def port_range_ordered(self):
        if self.port_end < self.port_start:
            raise ValueError('port_end must not be lower than port_start')
        return self

    @field_validator('subprotocols')
    @classmethod
    def subprotocols_not_empty(cls, v):
        if not v:
            raise ValueError('at least one subprotocol is required')
        return v


class DiffConfig(BaseModel):
    """Deferred diff approval configuration."""
    # None keeps pending diffs until the session ends
    pending_ttl_seconds: Optional[float] = Field(gt=0, default=1800.0)
    reap_interval_seconds: float = Field(gt=0, default=30.0)


class BifrostConfig(BaseModel):
    """Main configuration for Bifrost with validation."""

    model_config = ConfigDict(validate_assignment=True)

    # Paths
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".bifrost")
    workspace_roots: list[Path] = Field(default_factory=list)

    server: ServerConfig = Field(default_factory=ServerConfig)
    diff: DiffConfig = Field(default_factory=DiffConfig)

    # Logging
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR)$")
    log_file: Optional[Path] = None
    json_logs: bool = False

    def model_post_init(self, __context):
        """Normalize paths after initialization."""
        self.data_dir = Path(self.data_dir).expanduser()
        self.workspace_roots = [
            Path(root).expanduser().resolve() for root in self.workspace_roots
        ]

    @classmethod
    def load(cls, path: Optional[str] = None) -> 'BifrostConfig':
        """Load configuration from TOML file.

        Search order if path not provided:
        1. ./bifrost.toml (project-specific)
        2. ~/.bifrost/config.toml (user default)

        Args:
            path: Optional explicit config file path

        Returns:
            BifrostConfig instance
        """
        if path is None:
            candidates = [
                Path("bifrost.toml"),
                Path("~/.bifrost/config.toml").expanduser()
            ]
            for candidate in candidates:
                if candidate.exists():
                    path = str(candidate)
                    log.info("config_found", path=path)
                    break

        if path and Path(path).exists():
            try:
                data = toml.load(path)
                log.info("config_loaded", path=path)
                return cls(**data)
            except Exception as e:
                log.error("config_load_failed", path=path, error=str(e))
                return cls()

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


def validate_config(config: BifrostConfig) -> list[str]:
    """Validate configuration and return warnings.

    Args:
        config: Config to validate

    Returns:
        List of warning messages
    """
    warnings = []

    for root in config.workspace_roots:
        if not root.is_dir():
            warnings.append(f"Workspace root is not a directory: {root}")

    if config.server.host not in ("127.0.0.1", "localhost", "::1"):
        warnings.append(
            f"Server binds to {config.server.host}; the IDE will be reachable "
            "from other machines"
        )

    unknown = [p for p in config.server.subprotocols if p not in MCP_SUBPROTOCOLS]
    if unknown:
        warnings.append(f"Unrecognized subprotocols: {', '.join(unknown)}")

    if config.diff.pending_ttl_seconds is None:
        warnings.append("Pending diff approvals never expire (pending_ttl_seconds unset)")

    # Check lock directory is writable
    if config.server.write_lockfile:
        try:
            config.server.lock_dir.mkdir(parents=True, exist_ok=True)
            test_file = config.server.lock_dir / ".write_test"
            test_file.touch()
            test_file.unlink()
        except Exception as e:
            warnings.append(f"Lock directory not writable: {e}")

    return warnings
