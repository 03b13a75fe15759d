"""Layered configuration.

Values are taken, in increasing precedence, from the defaults, the TOML file
(``~/.fcsyncrc.toml`` or an explicit path), the environment
(``FCSYNC__<SECTION>__<KEY>``) and command line overrides.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from fcsync.engine.histogram import HistogramSettings
from fcsync.engine.models import ReconcileFlags
from fcsync.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.fcsyncrc.toml")
ENV_PREFIX = "FCSYNC__"


class WebSettings(BaseModel):
    """Location of and credentials for the flow cell service."""

    url: str = Field(default="", description="Base URL, ``<url>/api`` is the REST API")
    token: str = Field(default="", repr=False, description="API authentication token")


class IngestSettings(BaseModel):
    """Settings of the ``ingest`` command."""

    model_config = ConfigDict(populate_by_name=True)

    project_uuid: str = ""
    register_flowcell: bool = Field(default=True, alias="register")
    update: bool = True
    update_if_final: bool = False
    analyze_adapters: bool = True
    force_analyze_adapters: bool = False
    post_adapters: bool = True
    operator: str = ""
    sample_reads_per_tile: int = Field(default=1_000_000, ge=1)
    min_index_fraction: float = Field(default=0.001, ge=0.0, lt=1.0)

    def flags(self) -> ReconcileFlags:
        return ReconcileFlags(
            register=self.register_flowcell,
            update=self.update,
            update_if_final=self.update_if_final,
            analyze_adapters=self.analyze_adapters,
            force_analyze_adapters=self.force_analyze_adapters,
            post_adapters=self.post_adapters,
        )

    def histogram_settings(self) -> HistogramSettings:
        return HistogramSettings(
            sample_reads_per_tile=self.sample_reads_per_tile,
            min_index_fraction=self.min_index_fraction,
        )


class Settings(BaseModel):
    threads: int = Field(default=4, ge=1)
    log_token: bool = False
    verbose: bool = False
    quiet: bool = False
    web: WebSettings = Field(default_factory=WebSettings)
    ingest: IngestSettings = Field(default_factory=IngestSettings)

    def masked_token(self) -> str:
        if self.log_token or not self.web.token:
            return self.web.token
        return "***"


def merge(base: dict[str, Any], update: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge ``update`` into a copy of ``base``, skipping None values."""
    result = dict(base)
    for key, value in update.items():
        if value is None:
            continue
        if isinstance(value, Mapping) and isinstance(result.get(key), Mapping):
            result[key] = merge(result[key], value)
        else:
            result[key] = value
    return result


def read_config_file(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e


def env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Collect ``FCSYNC__SECTION__KEY`` variables into a nested dict."""
    result: dict[str, Any] = {}
    for name, value in environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        parts = [part.lower() for part in name[len(ENV_PREFIX):].split("__") if part]
        if not parts:
            continue
        node = result
        for part in parts[:-1]:
            node = node.setdefault(part, {})
            if not isinstance(node, dict):
                raise ConfigError(f"Conflicting environment variable {name}")
        node[parts[-1]] = value
    return result


def load_settings(
    config_path: Path | str | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """
    Build the effective settings.

    Args:
        config_path: TOML file to read; must exist when given. Without it
            ``~/.fcsyncrc.toml`` is read if present.
        overrides: Nested values from the command line; None values are ignored
        environ: Environment to read, defaults to ``os.environ``

    Raises:
        ConfigError: If the file cannot be read or a value is invalid
    """
    data: dict[str, Any] = {}
    if config_path is not None:
        path = Path(config_path).expanduser()
        if not path.exists():
            raise ConfigError(f"Configuration file {path} does not exist")
        data = read_config_file(path)
    else:
        path = DEFAULT_CONFIG_PATH.expanduser()
        if path.exists():
            data = read_config_file(path)
    if data:
        logger.debug("Loaded configuration from %s", path)

    data = merge(data, env_overrides(os.environ if environ is None else environ))
    data = merge(data, overrides or {})
    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
