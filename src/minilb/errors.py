"""Exception types shared across minilb.

Brief:
  Per-query failures derive from ResolutionError and are always answered with
  an empty authoritative reply by the DNS handler. Per-event failures
  (StatusUpdateError) are logged by the watch callbacks. ListenerError and
  ConfigError are the only fatal conditions.
"""


class MinilbError(Exception):
    """Base class for all minilb errors."""


class ResolutionError(MinilbError):
    """
    Brief: A DNS query could not be resolved to pod addresses.

    Inputs:
    - message: description

    Outputs:
    - Exception instance
    """

    # Short outcome label recorded on QueryResult for logging and tests.
    outcome = "error"


class QueryFormatError(ResolutionError):
    """The queried name does not split into (service, namespace)."""

    outcome = "format_error"


class HostnameNotFoundError(ResolutionError):
    """No alias binding, ingress rule or gateway route matched the hostname."""

    outcome = "not_found"


class NoReadyEndpointsError(ResolutionError):
    """The service has no ready IPv4 endpoint in any of its slices."""

    outcome = "no_endpoints"


class StatusUpdateError(MinilbError):
    """
    Brief: Writing a service load-balancer status failed.

    Inputs:
    - message: description including namespace/name

    Outputs:
    - Exception instance
    """


class ListenerError(MinilbError):
    """The DNS listen address could not be bound."""


class ConfigError(MinilbError):
    """Startup configuration is invalid."""
