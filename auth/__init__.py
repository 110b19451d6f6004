"""auth/ -- Accounts, identity tokens, and the login orchestration layer.

Layer rule: auth/ imports only stdlib, third-party libraries, core/, and
(in auth/service.py only) qrlogin/. api/ imports from auth/, not the other
way around.
"""
