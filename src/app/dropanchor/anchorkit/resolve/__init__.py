"""
Identity Resolution

This package provides utilities for resolving AT Protocol identifiers (DIDs, handles)
to the Personal Data Server that hosts them, implementing both DNS-based and HTTP-based
handle resolution.

Key Components:
- handle.py: Handle and DID resolution implementation

Resolution Types:
1. Handle Resolution
   - DNS-based resolution via TXT records (_atproto.{handle})
   - HTTP-based resolution via well-known endpoints (.well-known/atproto-did)

2. DID Resolution
   - did:plc method resolution via PLC directory
   - did:web method resolution via well-known endpoints

The resolution flow typically follows these steps:
1. Parse the input to determine if it's a handle or DID
2. For handles, query DNS and HTTP concurrently, preferring the DNS answer
3. For DIDs, fetch the DID document with the method's mechanism
4. Return the AtprotoPersonalDataServer service endpoint
"""
