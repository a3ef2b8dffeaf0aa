"""
Anchor Kit - AT Protocol check-in records

This package implements the record layer of the Anchor check-in app for the AT Protocol
ecosystem. It creates, fetches, deletes and verifies check-in records on a user's Personal
Data Server (PDS), and discovers which PDS hosts a given handle or DID.

Key Components:
- atproto: XRPC record client, request middleware chain, AT-URI parsing and PDS discovery
- model: Pydantic models for credentials, sessions and lexicon records
- resolve: Identity resolution utilities for AT Protocol DIDs and handles
- config: Settings loaded from the environment
- metrics: Vendor-agnostic metrics collection

Architecture Overview:
1. Discovery:
   - Handles resolve to DIDs through DNS and HTTP mechanisms
   - DIDs resolve to the PDS endpoint declared in their DID document

2. Record Transactions:
   - Check-ins reference a separately stored address record by StrongRef (uri + cid)
   - The address is written first; if the check-in write fails the address is deleted again
   - References are verified by comparing the stored cid with the live record's cid

3. Transport:
   - All HTTP traffic flows through a middleware chain on a shared aiohttp session
   - Errors surface to the caller immediately, there is no retry layer
"""
