"""Per-query DNS state machine.

Brief:
  RECEIVE -> PARSE -> ALIAS-RESOLVE -> SPLIT -> ENDPOINT-LOOKUP ->
  ANSWER-BUILD -> SHUFFLE -> REPLY. Every parseable query gets an
  authoritative NOERROR reply; failures only differ in the outcome label and
  the log line, never on the wire, so resolvers simply retry after the short
  TTL instead of caching a negative answer.
"""

from __future__ import annotations

import ipaddress
import logging
import random
from typing import List, MutableSequence, NamedTuple, Optional, Tuple, TypeVar

from dnslib import CLASS, QTYPE, RCODE, RR, A, DNSHeader, DNSRecord

from ..errors import QueryFormatError, ResolutionError
from ..resolve.chain import RouteLookupChain
from ..resolve.endpoints import EndpointAggregator
from ..resolve.hostnames import canonical_hostname

logger = logging.getLogger(__name__)

T = TypeVar("T")


class QueryResult(NamedTuple):
    """Result of handling one datagram.

    Inputs:
      - None (constructed by QueryHandler.handle).
    Outputs:
      - wire: Reply bytes; b"" when the datagram could not be parsed at all.
      - outcome: "answered", "unsupported_qtype", "format_error",
        "not_found", "no_endpoints", "malformed" or "error".
      - answers: Number of A records in the reply.
    """

    wire: bytes
    outcome: str
    answers: int


def shuffle_answers(answers: MutableSequence[T], rng: random.Random) -> None:
    """Brief: Reorder answers in place so repeated queries rotate pods.

    Inputs:
      - answers: Mutable sequence of resource records.
      - rng: Random source (seed it for deterministic tests).

    Outputs:
      - None. Position i is swapped with a uniform position in [0, i]; the
        multiset of answers is unchanged.
    """

    for i in range(len(answers)):
        j = rng.randint(0, i)
        answers[i], answers[j] = answers[j], answers[i]


def is_ipv4_literal(value: str) -> bool:
    try:
        ipaddress.IPv4Address(value)
    except ValueError:
        return False
    return True


def split_service_name(name: str, domain: str) -> Tuple[str, str]:
    """Brief: Split "<service>.<namespace>[.<domain>]" into its two parts.

    Inputs:
      - name: Internal name without trailing dot.
      - domain: Canonical zone suffix.

    Outputs:
      - (service, namespace).

    Raises:
      - QueryFormatError: the remainder does not split on its first dot into
        two non-empty components.

    Example:
      >>> split_service_name("mosquitto.automation.minilb", "minilb")
      ('mosquitto', 'automation')
    """

    value = canonical_hostname(name)
    suffix = "." + domain
    if value.endswith(suffix):
        value = value[: -len(suffix)]
    parts = value.split(".", 1)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise QueryFormatError(f"Invalid domain format: {value}")
    return parts[0], parts[1]


class QueryHandler:
    """Brief: Answer A queries with the ready pod addresses of a service.

    Inputs:
      - chain: RouteLookupChain used for names outside the domain.
      - endpoints: EndpointAggregator reading the EndpointSlice store.
      - domain: Zone suffix (canonicalized here).
      - ttl: Answer TTL in seconds.
      - rng: Optional random.Random for the answer shuffle.

    Outputs:
      - QueryHandler; handle() is safe to call from many threads at once.

    Example:
      >>> handler = QueryHandler(chain, aggregator, "minilb", 5)  # doctest: +SKIP
      >>> handler.handle(DNSRecord.question("web.default.minilb").pack())  # doctest: +SKIP
    """

    def __init__(
        self,
        chain: RouteLookupChain,
        endpoints: EndpointAggregator,
        domain: str,
        ttl: int,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._chain = chain
        self._endpoints = endpoints
        self.domain = canonical_hostname(domain)
        self.ttl = int(ttl)
        self._rng = rng or random.Random()

    @staticmethod
    def _empty_reply(request: DNSRecord) -> DNSRecord:
        reply = DNSRecord(
            DNSHeader(
                id=request.header.id,
                bitmap=request.header.bitmap,
                qr=1,
                aa=1,
                ra=0,
            ),
            questions=list(request.questions),
        )
        reply.header.rcode = RCODE.NOERROR
        return reply

    def resolve_addresses(self, qname: str) -> Tuple[List[str], str, str]:
        """Brief: Map a queried name to ready pod IPv4 addresses.

        Inputs:
          - qname: Queried name, possibly with a trailing root dot.

        Outputs:
          - (addresses, service, namespace). service/namespace are "" when an
            alias resolved directly to an address.

        Raises:
          - ResolutionError subclasses for alias, format and endpoint failures.
        """

        name = qname[:-1] if qname.endswith(".") else qname

        if not canonical_hostname(name).endswith("." + self.domain):
            name = self._chain.resolve_hostname(name)
            if is_ipv4_literal(name):
                return [name], "", ""

        service, namespace = split_service_name(name, self.domain)
        subsets = self._endpoints.get_endpoints(service, namespace)
        addresses = [addr for subset in subsets for addr in subset.addresses]
        return addresses, service, namespace

    def build_answers(self, request: DNSRecord, addresses: List[str]) -> List[RR]:
        answers: List[RR] = []
        for addr in addresses:
            if not is_ipv4_literal(addr):
                logger.warning("Skipping non-IPv4 endpoint address %r", addr)
                continue
            answers.append(
                RR(
                    rname=request.q.qname,
                    rtype=QTYPE.A,
                    rclass=CLASS.IN,
                    ttl=self.ttl,
                    rdata=A(addr),
                )
            )
        return answers

    def handle(self, data: bytes) -> QueryResult:
        """Brief: Process one wire-format query.

        Inputs:
          - data: Datagram bytes.

        Outputs:
          - QueryResult. wire is always an authoritative reply unless the
            datagram could not be parsed as DNS.
        """

        try:
            request = DNSRecord.parse(data)
        except Exception as exc:
            logger.warning("Dropping malformed DNS datagram (%d bytes): %s", len(data), exc)
            return QueryResult(b"", "malformed", 0)

        reply = self._empty_reply(request)

        if not request.questions or request.q.qtype != QTYPE.A:
            logger.debug(
                "Empty reply for %s",
                f"{request.q.qname} {QTYPE.get(request.q.qtype)}"
                if request.questions
                else "query without question",
            )
            return QueryResult(reply.pack(), "unsupported_qtype", 0)

        qname = str(request.q.qname)
        try:
            addresses, service, namespace = self.resolve_addresses(qname)
        except QueryFormatError as exc:
            logger.warning("%s", exc)
            return QueryResult(reply.pack(), exc.outcome, 0)
        except ResolutionError as exc:
            logger.error("%s: %s", qname.rstrip("."), exc)
            return QueryResult(reply.pack(), exc.outcome, 0)
        except Exception:
            logger.exception("Unexpected failure resolving %s", qname)
            return QueryResult(reply.pack(), "error", 0)

        answers = self.build_answers(request, addresses)
        shuffle_answers(answers, self._rng)
        for rr in answers:
            reply.add_answer(rr)

        logger.info(
            "%s svc=%s ns=%s",
            [str(rr.rdata) for rr in answers],
            service,
            namespace,
        )
        logger.debug("%s", reply)
        return QueryResult(reply.pack(), "answered", len(answers))
