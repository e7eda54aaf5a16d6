"""Configuration management for wildcheck.

Loads configuration from ``config.yaml``, with support for CLI overrides and
environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field

# Fallback candidates when neither a resolver file nor public DNS yields any
DEFAULT_RESOLVERS: List[str] = [
    "1.1.1.1:53",  # Cloudflare
    "8.8.8.8:53",  # Google
    "64.6.64.6:53",  # Verisign
    "77.88.8.8:53",  # Yandex.DNS
    "74.82.42.42:53",  # Hurricane Electric
    "1.0.0.1:53",  # Cloudflare Secondary
    "8.8.4.4:53",  # Google Secondary
    "77.88.8.1:53",  # Yandex.DNS Secondary
]

# Trusted tier, queried as ground truth
BASELINE_RESOLVERS: List[str] = [
    "1.1.1.1:53",  # Cloudflare
    "8.8.8.8:53",  # Google
    "9.9.9.9:53",  # Quad9
    "64.6.64.6:53",  # Verisign
    "208.67.222.222:53",  # OpenDNS
]


class GeneralConfig(BaseModel):
    """General run configuration."""

    threads: int = Field(default=10, ge=1)
    timeout: float = Field(default=2.0, gt=0)
    job_timeout: Optional[float] = None
    output_mode: Literal["tagged", "filtered"] = "tagged"


class ResolversConfig(BaseModel):
    """Resolver pool configuration."""

    candidates: List[str] = Field(default_factory=lambda: list(DEFAULT_RESOLVERS))
    baseline: List[str] = Field(default_factory=lambda: list(BASELINE_RESOLVERS))
    per_resolver_qps: int = Field(default=15, ge=1)
    baseline_qps: int = Field(default=10, ge=1)
    max_qps: Optional[int] = None
    retries: int = Field(default=3, ge=1)
    max_failures: int = Field(default=10, ge=1)
    validation_timeout: float = Field(default=3.0, gt=0)
    validation_concurrency: int = Field(default=500, ge=1)
    validation_name: str = "www.google.com"
    validation_domain: str = "google.com"
    confirm_nxdomain: bool = True
    public_dns_url: str = "https://public-dns.info/nameserver/{country}.txt"
    geo_url: str = "https://ipapi.co/json"
    default_country: str = "us"


class WildcardConfig(BaseModel):
    """Wildcard signature configuration."""

    probe_count: int = Field(default=3, ge=2)
    label_length: int = Field(default=16, ge=8, le=63)
    check_cname: bool = True


class Config(BaseModel):
    """Top-level wildcheck configuration."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    resolvers: ResolversConfig = Field(default_factory=ResolversConfig)
    wildcard: WildcardConfig = Field(default_factory=WildcardConfig)


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from a YAML file, applying environment variable overrides.

    Args:
        config_path: Optional path to a YAML configuration file. Defaults to
                     ``config.yaml`` in the current working directory.

    Returns:
        Populated :class:`Config` instance.
    """
    path = Path(config_path) if config_path else Path("config.yaml")

    raw: Dict[str, Any] = {}
    if path.exists():
        with path.open("r") as fh:
            raw = yaml.safe_load(fh) or {}

    # Environment variable overrides (WILDCHECK__SECTION__KEY=value)
    _apply_env_overrides(raw)

    return Config(**raw)


def _apply_env_overrides(raw: Dict[str, Any]) -> None:
    """Mutate *raw* in-place with values from environment variables.

    Environment variables follow the pattern ``WILDCHECK__<SECTION>__<KEY>``.
    For example ``WILDCHECK__GENERAL__THREADS=50``.
    """
    prefix = "WILDCHECK__"
    for env_key, env_val in os.environ.items():
        if not env_key.startswith(prefix):
            continue
        parts = env_key[len(prefix):].lower().split("__")
        if len(parts) == 2:
            section, key = parts
            raw.setdefault(section, {})[key] = env_val
