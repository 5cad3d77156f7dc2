"""Typed startup configuration for minilb.

Settings are validated once at startup with pydantic and are immutable
afterwards; every component receives the values it needs from here.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..resolve.hostnames import canonical_hostname
from .logging_config import _LEVELS

logger = logging.getLogger(__name__)

DEFAULT_LISTEN_HOST = "0.0.0.0"
DEFAULT_LB_CLASS = "minilb"
DEFAULT_HOSTNAME_ANNOTATION = "minilb/host"
MAX_TTL = 2**31 - 1


def parse_listen(value: str) -> Tuple[str, int]:
    """Brief: Split a "host:port" listen address.

    Inputs:
      - value: "host:port", ":port" or "[v6]:port".

    Outputs:
      - (host, port). An empty host becomes "0.0.0.0".

    Raises:
      - ValueError: missing separator, non-numeric or out-of-range port.

    Example:
      >>> parse_listen(":53")
      ('0.0.0.0', 53)
    """

    text = str(value).strip()
    if ":" not in text:
        raise ValueError(f"listen address {value!r} must be host:port")
    host, _, port_text = text.rpartition(":")
    host = host.strip()
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"listen port {port_text!r} is not a number") from None
    if not 0 <= port <= 65535:
        raise ValueError(f"listen port {port} out of range 0..65535")
    return host or DEFAULT_LISTEN_HOST, port


class LoggingConfig(BaseModel):
    """Brief: Logging options passed to init_logging().

    Inputs:
      - level: debug, info, warn, warning, error, crit or critical.
      - stderr: Log to stderr.
      - file: Optional append-mode log file path.
      - syslog: False, True, or a mapping with address/facility.

    Outputs:
      - LoggingConfig instance.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    level: str = Field(default="info")
    stderr: bool = Field(default=True)
    file: Optional[str] = Field(default=None)
    syslog: Union[bool, Dict[str, Any]] = Field(default=False)

    @field_validator("level")
    @classmethod
    def _check_level(cls, v: str) -> str:
        level = str(v).strip().lower()
        if level not in _LEVELS:
            raise ValueError(f"unknown log level {v!r}")
        return level


class Settings(BaseModel):
    """Brief: Immutable process configuration.

    Inputs:
      - kubeconfig: kubeconfig path; "" selects in-cluster or ~/.kube/config.
      - domain: Zone suffix services resolve under.
      - listen: UDP listen address.
      - resync: Watch relist period in seconds.
      - ttl: Answer TTL in seconds.
      - controller: Write load-balancer status for managed services.
      - lb_class: loadBalancerClass to manage ("" for every LoadBalancer).
      - hostname_annotation: Service annotation declaring an alias hostname.
      - logging: LoggingConfig.

    Outputs:
      - Settings instance; listen_host/listen_port expose the parsed address.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    kubeconfig: str = Field(default="")
    domain: str = Field(default="minilb")
    listen: str = Field(default=":53")
    resync: int = Field(default=300, gt=0)
    ttl: int = Field(default=5, ge=0, le=MAX_TTL)
    controller: bool = Field(default=False)
    lb_class: str = Field(default=DEFAULT_LB_CLASS)
    hostname_annotation: str = Field(default=DEFAULT_HOSTNAME_ANNOTATION, min_length=1)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("kubeconfig", "lb_class", mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("domain")
    @classmethod
    def _check_domain(cls, v: str) -> str:
        domain = canonical_hostname(v)
        if not domain:
            raise ValueError("domain must not be empty")
        return domain

    @field_validator("listen")
    @classmethod
    def _check_listen(cls, v: str) -> str:
        parse_listen(v)
        return v

    @property
    def listen_host(self) -> str:
        return parse_listen(self.listen)[0]

    @property
    def listen_port(self) -> int:
        return parse_listen(self.listen)[1]
