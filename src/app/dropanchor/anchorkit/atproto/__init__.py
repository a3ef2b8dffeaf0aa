"""
AT Protocol Integration

This package provides the XRPC record client and the discovery of the Personal Data Server
(PDS) instances it talks to.

Key Components:
- client.py: Record client (sessions, create/get/delete record, check-in transactions)
- chain.py: Transport and middleware chain for outgoing requests (metrics, debug logging)
- discovery.py: Handle/DID to PDS URL discovery with an optional handle based guess
- uri.py: AT-URI parsing
- errors.py: Exception hierarchy raised by the client

Key Features:
- Check-ins reference their address through a content-hash pinned StrongRef
- Compensating delete of the address record when the check-in write fails
- StrongRef verification against the live record's cid

All communication with the PDS goes through the Transport protocol so that tests can
substitute a fake transport returning canned responses.
"""
