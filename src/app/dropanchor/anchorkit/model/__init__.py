"""
Data Models

This package defines the value types exchanged with the record client using Pydantic.
None of them are persisted locally; they are built from, or encoded to, XRPC JSON bodies.

Key Models:
- credentials.py: Credentials and the createSession/refreshSession Session body
- records.py: Lexicon records (check-in, address, geo), StrongRef and XRPC record responses

The record relationships are:
- AddressRecord: stored on its own in community.lexicon.location.address
- CheckinRecord: stored in app.dropanchor.checkin, pointing at an AddressRecord via StrongRef
- ResolvedCheckin: a read-time pairing of both with the StrongRef verification result
"""
