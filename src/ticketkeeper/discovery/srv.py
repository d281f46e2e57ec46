"""
TicketKeeper Directory Service Discovery

Locates directory servers for a domain through DNS SRV records.

Queries: _ldap._tcp.<domain>

An empty answer is the normal outcome for a domain that is not reachable
from the current network and is reported as DiscoveryError(NO_RECORDS).
No retries happen here; the scheduler tries again on its next pass.
"""

from __future__ import annotations

from typing import Any, List, Optional

import attrs
import dns.exception
import dns.resolver
import structlog
from returns.result import Failure, Result, Success

from ticketkeeper.core.exceptions import DiscoveryError
from ticketkeeper.core.types import SRVRecord

logger = structlog.get_logger()

LDAP_SERVICE_PREFIX = "_ldap._tcp."


def ldap_service_query(domain: str) -> str:
    """SRV query name for a domain's LDAP service."""
    return LDAP_SERVICE_PREFIX + domain.lower()


@attrs.define
class ServiceDiscovery:
    """
    SRV resolver for directory servers.

    Example:
        discovery = ServiceDiscovery(timeout=5.0)
        result = discovery.resolve(ldap_service_query("EXAMPLE.COM"))
        if isinstance(result, Success):
            for record in result.unwrap():
                print(record.target, record.port)
    """

    timeout: float = 5.0
    _resolver: Optional[Any] = attrs.field(default=None, alias="resolver")
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def resolve(self, service_query: str) -> Result[List[SRVRecord], DiscoveryError]:
        """
        Resolve SRV records for service_query.

        Returns:
            Success(records) sorted by priority, heavier weight first
            Failure(DiscoveryError) with NO_RECORDS or LOOKUP_FAILED
        """
        try:
            resolver = self._resolver if self._resolver is not None else dns.resolver.Resolver()
            answers = resolver.resolve(service_query, "SRV", lifetime=self.timeout)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            self._logger.info("srv_lookup_empty", query=service_query)
            return Failure(DiscoveryError.no_records(service_query))
        except dns.exception.DNSException as e:
            self._logger.warning("srv_lookup_failed", query=service_query, error=str(e))
            return Failure(DiscoveryError.lookup_failed(service_query, e))

        records = []
        for rdata in answers:
            target = str(rdata.target).rstrip(".")
            # RFC 2782: a target of "." means the service is not available
            if not target:
                continue
            try:
                records.append(
                    SRVRecord(
                        target=target,
                        port=int(rdata.port),
                        priority=int(rdata.priority),
                        weight=int(rdata.weight),
                    )
                )
            except (TypeError, ValueError) as e:
                self._logger.debug("srv_record_skipped", query=service_query, error=str(e))

        if not records:
            self._logger.info("srv_lookup_empty", query=service_query)
            return Failure(DiscoveryError.no_records(service_query))

        records.sort(key=lambda r: r.sort_key)
        self._logger.debug(
            "srv_lookup_complete",
            query=service_query,
            records=[str(r) for r in records],
        )
        return Success(records)

    def resolve_domain(self, domain: str) -> Result[List[SRVRecord], DiscoveryError]:
        """Resolve the LDAP service of a domain."""
        return self.resolve(ldap_service_query(domain))
