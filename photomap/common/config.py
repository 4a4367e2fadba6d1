from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml


DEFAULT_CONFIG_PATH = "config/params.yaml"

DEFAULTS: Dict[str, Any] = {
    "server": {
        "host": "0.0.0.0",
        "port": 3000,
        "max_upload_bytes": 10 * 1024 * 1024,
    },
    "storage": {
        "mode": "auto",              # auto | local | cloud
        "upload_dir": "uploads",
        "s3_bucket": None,
        "s3_region": "us-east-1",
        "s3_endpoint_url": None,
        "dynamodb_table": None,
        "aws_access_key_id": None,
        "aws_secret_access_key": None,
    },
    "client": {
        "store_path": "data/photos.json",
        "store_key": "photoMapPhotos",
        "api_url": "http://localhost:3000",
    },
    "geolocation": {
        "provider": "ip",            # ip | static | none
        "ip_url": "https://ipapi.co/json/",
        "static": {"latitude": 40.7128, "longitude": -74.0060, "accuracy_m": 50.0},
        "timeout_s": 10.0,
        "maximum_age_s": 60.0,
        "enable_high_accuracy": True,
    },
    "camera": {
        "preferred_index": 0,
        "fallback_indices": [1, 2],
        "width": 1280,
        "height": 720,
        "jpeg_quality": 80,
        "warmup_frames": 3,
    },
    "logging": {"level": "INFO"},
}

# env var -> (section, key, parser)
_ENV_OVERRIDES = {
    "PORT": ("server", "port", int),
    "UPLOAD_DIR": ("storage", "upload_dir", str),
    "S3_BUCKET": ("storage", "s3_bucket", str),
    "S3_REGION": ("storage", "s3_region", str),
    "S3_ENDPOINT_URL": ("storage", "s3_endpoint_url", str),
    "DYNAMODB_TABLE": ("storage", "dynamodb_table", str),
    "AWS_ACCESS_KEY_ID": ("storage", "aws_access_key_id", str),
    "AWS_SECRET_ACCESS_KEY": ("storage", "aws_secret_access_key", str),
    "PHOTOMAP_API_URL": ("client", "api_url", str),
    "PHOTOMAP_STORE": ("client", "store_path", str),
    "LOG_LEVEL": ("logging", "level", str),
}


def _deep_merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in override.items():
        if isinstance(v, Mapping) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = copy.deepcopy(v)
    return out


def load_config(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Load YAML params merged over DEFAULTS, then apply environment overrides.

    Path precedence: explicit `path` -> env PHOTOMAP_CONFIG -> config/params.yaml.
    A missing file is not an error; defaults are used.
    """
    env = os.environ if env is None else env
    path = path or env.get("PHOTOMAP_CONFIG") or DEFAULT_CONFIG_PATH

    cfg = copy.deepcopy(DEFAULTS)
    p = Path(path)
    if p.exists():
        with p.open("r") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config root must be a mapping: {path}")
        cfg = _deep_merge(cfg, loaded)

    for var, (section, key, parse) in _ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw:
            cfg[section][key] = parse(raw)

    # USE_LOCAL_STORAGE=true forces local mode regardless of cloud settings
    if str(env.get("USE_LOCAL_STORAGE", "")).lower() == "true":
        cfg["storage"]["mode"] = "local"

    return cfg
