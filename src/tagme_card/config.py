from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import phonenumbers

logger = logging.getLogger(__name__)


@dataclass
class Paths:
    root: Path
    out_dir: Path
    local_dir: Path
    conf_file: Path


@dataclass
class Settings:
    default_region: str = "PH"
    default_country_code: str = ""   # derived from default_region when empty
    default_handle: str = "@yourhandle"
    base_url: str = "http://localhost:8422"
    supabase_url: str = ""
    supabase_key: str = ""
    table: str = "cards"
    bucket: str = "profile-photos"
    http_timeout: float = 10.0

    def __post_init__(self) -> None:
        if not self.default_country_code:
            self.default_country_code = country_code_for_region(self.default_region)

    @property
    def remote_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


DEFAULT_CONF = """# tagme-card local config (TOML)
default_region = "PH"
default_handle = "@yourhandle"
base_url = "http://localhost:8422"
supabase_url = ""
supabase_key = ""
table = "cards"
bucket = "profile-photos"
http_timeout = 10
"""

_STR_KEYS = (
    "default_region", "default_country_code", "default_handle", "base_url",
    "supabase_url", "supabase_key", "table", "bucket",
)

ENV_OVERRIDES = {
    "TAGME_SUPABASE_URL": "supabase_url",
    "TAGME_SUPABASE_KEY": "supabase_key",
}


def country_code_for_region(region: str) -> str:
    """"PH" → "+63"; empty string for unknown regions."""
    code = phonenumbers.country_code_for_region((region or "").upper())
    return f"+{code}" if code else ""


def load_settings(conf: Path | None = None, environ: dict[str, str] | None = None) -> Settings:
    data: dict[str, Any] = {}
    if conf is not None and conf.exists():
        try:
            data = tomllib.loads(conf.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning("Ignoring malformed config %s: %s", conf, e)
            data = {}

    kwargs: dict[str, Any] = {k: str(data[k]) for k in _STR_KEYS if k in data}
    if "http_timeout" in data:
        try:
            kwargs["http_timeout"] = float(data["http_timeout"])
        except (TypeError, ValueError):
            logger.warning("Ignoring non-numeric http_timeout %r", data["http_timeout"])

    env = os.environ if environ is None else environ
    for var, key in ENV_OVERRIDES.items():
        if env.get(var):
            kwargs[key] = env[var]

    return Settings(**kwargs)


def ensure_workspace(base: Path | None = None) -> tuple[Paths, Settings]:
    root = Path(base or os.getcwd())
    out = root / "cards-out"
    local = root / "local"
    conf = local / "card.conf"

    for d in (out, local):
        d.mkdir(parents=True, exist_ok=True)

    if not conf.exists():
        conf.write_text(DEFAULT_CONF, encoding="utf-8")

    return (
        Paths(root=root, out_dir=out, local_dir=local, conf_file=conf),
        load_settings(conf),
    )
