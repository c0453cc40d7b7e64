from __future__ import annotations

"""Settings loader from environment variables."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import os


VALID_REGION_MODES = {"measure", "phrase"}


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean env var with a default."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.lower() in {"1", "true", "yes"}


def _app_env() -> str:
    """Return the application environment name."""
    return os.getenv("APP_ENV") or os.getenv("ENV") or "dev"


def project_root() -> Path:
    """Root for relative output paths: STAFFCOMBINE_PROJECT_ROOT, else the working directory."""
    configured = os.getenv("STAFFCOMBINE_PROJECT_ROOT")
    root = Path(configured).expanduser() if configured else Path.cwd()
    return root.resolve()


def resolve_project_path(path_value: str, root: Optional[Path] = None) -> Path:
    """Resolve a relative path under the project root, rejecting escapes."""
    if not path_value:
        raise ValueError("Path is required.")
    path = Path(path_value)
    if path.is_absolute():
        raise ValueError("Absolute paths are not allowed.")
    base = (root or project_root()).resolve()
    resolved = (base / path).resolve()
    if resolved != base and base not in resolved.parents:
        raise ValueError("Path escapes project root.")
    return resolved


@dataclass(frozen=True)
class Settings:
    """Configuration values parsed from the environment."""
    project_root: Path
    output_dir: Path
    auto_clear_unassigned_slots: bool
    region_mode: str
    warn_secondary_layers: bool
    app_env: str

    @classmethod
    def from_env(cls) -> "Settings":
        """Construct settings from environment variables."""
        root = project_root()
        output_dir = resolve_project_path(os.getenv("STAFFCOMBINE_OUTPUT_DIR", "output"), root)
        region_mode = os.getenv("STAFFCOMBINE_REGION_MODE", "measure").strip().lower()
        if region_mode not in VALID_REGION_MODES:
            raise ValueError(
                f"STAFFCOMBINE_REGION_MODE must be one of {sorted(VALID_REGION_MODES)}, "
                f"got {region_mode!r}."
            )
        return cls(
            project_root=root,
            output_dir=output_dir,
            auto_clear_unassigned_slots=_env_bool("STAFFCOMBINE_AUTO_CLEAR", True),
            region_mode=region_mode,
            warn_secondary_layers=_env_bool("STAFFCOMBINE_WARN_SECONDARY_LAYERS", True),
            app_env=_app_env(),
        )
