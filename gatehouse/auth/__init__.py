"""
Session and login-handshake core.

Design goals:
- Opaque, server-side sessions (only a hash of the token is stored).
- External (OAuth) login guarded by a signed, short-lived, single-use state cookie.
- Mutating requests must come from an allow-listed origin.
- Fail closed: anything ambiguous is treated as anonymous / denied.
"""
