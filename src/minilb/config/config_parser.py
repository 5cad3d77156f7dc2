"""Configuration loading for the minilb CLI entrypoint.

Brief:
  Builds Settings from four layers, lowest to highest precedence:
    - model defaults
    - the YAML file given by --config
    - MINILB_<FIELD> environment variables
    - command-line flags

Inputs:
  - argv and an environment mapping

Outputs:
  - A validated, immutable Settings instance (or ConfigError)
"""

from __future__ import annotations

import argparse
import os
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import ValidationError

from .. import __version__
from ..errors import ConfigError
from .config_schema import Settings

ENV_PREFIX = "MINILB_"

# Fields whose environment values are taken verbatim instead of as YAML so
# that e.g. MINILB_DOMAIN=on stays a string.
_STRING_FIELDS = ("kubeconfig", "domain", "listen", "lb_class", "hostname_annotation")
_SCALAR_FIELDS = ("resync", "ttl", "controller")


def _parse_yaml_value(text: str) -> Any:
    """Brief: Parse an environment value as a YAML scalar.

    Inputs:
      - text: Raw string.

    Outputs:
      - Any: Parsed value (falls back to the original string on parse errors).
    """

    try:
        return yaml.safe_load(text)
    except yaml.YAMLError:
        return text


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="minilb",
        description="Cluster-aware DNS resolver for Kubernetes LoadBalancer services",
    )
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--kubeconfig", help="kubeconfig path (default: in-cluster or ~/.kube/config)")
    parser.add_argument("--domain", help="zone suffix services resolve under (default: minilb)")
    parser.add_argument("--listen", help="UDP listen address host:port (default: :53)")
    parser.add_argument("--resync", type=int, help="watch resync period in seconds (default: 300)")
    parser.add_argument("--ttl", type=int, help="answer TTL in seconds (default: 5)")
    parser.add_argument(
        "--controller",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="write load-balancer status for managed services",
    )
    parser.add_argument("--lb-class", dest="lb_class", help='loadBalancerClass to manage ("" for all)')
    parser.add_argument(
        "--hostname-annotation",
        dest="hostname_annotation",
        help="service annotation declaring an alias hostname",
    )
    parser.add_argument("--log-level", dest="log_level", help="debug, info, warn, error or crit")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def load_yaml_config(path: str) -> Dict[str, Any]:
    """Brief: Read a YAML configuration file.

    Inputs:
      - path: File path.

    Outputs:
      - dict: Parsed mapping ({} for an empty file).

    Raises:
      - ConfigError: unreadable file, invalid YAML, or a non-mapping root.
    """

    try:
        with open(path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ConfigError(f"cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc

    if not isinstance(cfg, dict):
        raise ConfigError(f"{path}: configuration root must be a mapping")
    return cfg


def env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    """Brief: Collect MINILB_<FIELD> overrides.

    Inputs:
      - environ: Environment mapping.

    Outputs:
      - dict of field -> value; MINILB_LOG_LEVEL maps to logging.level.

    Example:
      >>> env_overrides({"MINILB_TTL": "30", "MINILB_DOMAIN": "lb"})
      {'domain': 'lb', 'ttl': 30}
    """

    out: Dict[str, Any] = {}
    for field in _STRING_FIELDS:
        key = ENV_PREFIX + field.upper()
        if key in environ:
            out[field] = environ[key]
    for field in _SCALAR_FIELDS:
        key = ENV_PREFIX + field.upper()
        if key in environ:
            out[field] = _parse_yaml_value(environ[key])
    level = environ.get(ENV_PREFIX + "LOG_LEVEL")
    if level:
        out["logging"] = {"level": level}
    return out


def cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for field in _STRING_FIELDS + _SCALAR_FIELDS:
        value = getattr(args, field, None)
        if value is not None:
            out[field] = value
    if args.log_level:
        out["logging"] = {"level": args.log_level}
    return out


def merge_layers(*layers: Mapping[str, Any]) -> Dict[str, Any]:
    """Brief: Shallow-merge layers; the logging section is merged key by key."""

    merged: Dict[str, Any] = {}
    for layer in layers:
        for key, value in layer.items():
            if key == "logging" and isinstance(value, dict):
                base = merged.get("logging")
                merged["logging"] = {**(base if isinstance(base, dict) else {}), **value}
            else:
                merged[key] = value
    return merged


def load_settings(
    argv: Optional[List[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Brief: Parse argv/environment/YAML into Settings.

    Inputs:
      - argv: Command-line arguments without the program name
        (defaults to sys.argv[1:]).
      - environ: Environment mapping (defaults to os.environ).

    Outputs:
      - Settings.

    Raises:
      - ConfigError: any layer is unreadable or the merged values are invalid.
      - SystemExit: argparse usage errors, --help and --version.
    """

    args = build_arg_parser().parse_args(argv)
    env = os.environ if environ is None else environ

    file_cfg = load_yaml_config(args.config) if args.config else {}
    merged = merge_layers(file_cfg, env_overrides(env), cli_overrides(args))

    try:
        return Settings.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"invalid configuration: {exc}") from exc
