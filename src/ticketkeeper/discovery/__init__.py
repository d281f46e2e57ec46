"""
TicketKeeper Discovery Module

DNS SRV based discovery of directory servers.
"""

from ticketkeeper.discovery.srv import ServiceDiscovery, ldap_service_query

__all__ = [
    "ServiceDiscovery",
    "ldap_service_query",
]
