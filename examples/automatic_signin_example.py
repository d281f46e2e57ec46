#!/usr/bin/env python3
"""
Automatic Sign-In Example

Demonstrates how to use TicketKeeper to keep directory accounts signed in.

Features:
1. Configuration from a mapping
2. SRV discovery of each account's directory
3. Ticket cache inspection
4. One ticket check through the coordinator
5. Published user state and notifications

Usage:
    python automatic_signin_example.py alice@EXAMPLE.COM [bob@EXAMPLE.COM ...]
"""

import sys

from returns.result import Failure

from ticketkeeper import SignInConfig, create_ticket_keeper
from ticketkeeper.directory import gssapi_available
from ticketkeeper.discovery import ServiceDiscovery
from ticketkeeper.tickets import TicketCacheInspector


def main(principals):
    """Demonstrate one automatic sign-in check."""

    print("=" * 70)
    print("TicketKeeper - Automatic Sign-In")
    print("=" * 70)
    print()

    config = SignInConfig.from_dict(
        {
            "accounts": principals,
            "session_timeout": 30,
            "custom_attributes": ["employeeNumber"],
        }
    )

    # ==========================================================================
    # EXAMPLE 1: Discover directory servers
    # ==========================================================================
    print("1. Discover directory servers")
    print("-" * 40)

    discovery = ServiceDiscovery(timeout=config.dns_timeout)
    for account in config.accounts:
        result = discovery.resolve_domain(account.domain)
        if isinstance(result, Failure):
            print(f"   {account}: {result.failure().message}")
            continue
        for record in result.unwrap():
            print(f"   {account}: {record.target}:{record.port} (priority {record.priority})")
    print()

    # ==========================================================================
    # EXAMPLE 2: Inspect the ticket cache
    # ==========================================================================
    print("2. Inspect the ticket cache")
    print("-" * 40)

    cache = TicketCacheInspector()
    listing = cache.list_principals()
    if isinstance(listing, Failure):
        print(f"   Cache unavailable: {listing.failure().message}")
    else:
        for entry in sorted(listing.unwrap(), key=lambda e: e.principal):
            marker = "*" if entry.is_default else " "
            status = "expired" if entry.expired else "valid"
            print(f"   {marker} {entry.principal} ({status})")
        if not listing.unwrap():
            print("   (empty)")
    print()

    # ==========================================================================
    # EXAMPLE 3: Run one ticket check
    # ==========================================================================
    print("3. Run one ticket check")
    print("-" * 40)

    available, reason = gssapi_available()
    if not available:
        print(f"   GSSAPI not available ({reason}); install ticketkeeper[native]")
        return

    keeper = create_ticket_keeper(config)
    keeper.state_store.add_listener(
        lambda note, account, details: print(f"   notification: {note.name} {account}")
    )

    for sign_in_pass in keeper.scheduler.check_tickets():
        sign_in_pass.wait(timeout=60)
        for report in sign_in_pass.reports:
            print(f"   {report.account}: {report.outcome.name} {report.detail}")
    print()

    # ==========================================================================
    # EXAMPLE 4: Published user state
    # ==========================================================================
    print("4. Published user state")
    print("-" * 40)

    for key, state in sorted(keeper.state_store.snapshot().items()):
        attributes = state.user_attributes
        print(f"   {key}:")
        print(f"      authenticated: {state.is_authenticated}")
        print(f"      stored secret: {state.has_stored_secret}")
        if attributes is not None:
            print(f"      principal:     {attributes.user_principal}")
            print(f"      groups:        {', '.join(attributes.groups) or '-'}")
    print()


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)
    main(sys.argv[1:])
