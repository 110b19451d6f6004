"""qrlogin/ -- Cross-device QR login sessions.

Layer rule: qrlogin/ imports only stdlib, third-party libraries, core/, and
auth/ (for the token codec and user lookup). It does NOT import from api/.
"""
