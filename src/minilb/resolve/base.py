from __future__ import annotations

import logging
from typing import ClassVar

logger = logging.getLogger(__name__)


class ResolverStage:
    """Brief: One step of the hostname fallback chain.

    Subclasses implement try_resolve() and return "" when they have no match
    (including when their backing store is unavailable). Raising is reserved
    for genuine failures; the chain logs them and moves on to the next stage.

    Inputs:
      - None at this level; concrete stages take their stores/caches.

    Outputs:
      - ResolverStage instance.

    Example:
      >>> class Static(ResolverStage):
      ...     name = "static"
      ...     def try_resolve(self, hostname):
      ...         return "web.default.minilb" if hostname == "web.example" else ""
      >>> Static().try_resolve("web.example")
      'web.default.minilb'
    """

    name: ClassVar[str] = "stage"

    @property
    def available(self) -> bool:
        """False when the stage's backing data source does not exist."""

        return True

    def try_resolve(self, hostname: str) -> str:
        """Brief: Map a canonical hostname to a target name or address.

        Inputs:
          - hostname: Canonical (lower-case, no trailing dot) hostname.

        Outputs:
          - str: Target ("<svc>.<ns>.<domain>", a load-balancer hostname or an
            IP) or "" when this stage has no match.
        """

        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
