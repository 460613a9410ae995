"""auth/ -- Accounts, credentials, sessions and OTPs for CyberShield.

Layer rule: auth/ imports only stdlib + third-party libraries + core/.
It does NOT import from api/ or notify/.
api/ and notify/ import from auth/, not the other way around.
"""
