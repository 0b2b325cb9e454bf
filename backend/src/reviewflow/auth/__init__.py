"""Bearer-token authentication and role checks.

Tokens are issued by the external identity service; this package only
verifies them and turns the claims into a Principal.
"""
