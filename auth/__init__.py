"""auth/ -- Authentication and authorization core for Petrosmart.

Stores (accounts, OTPs, password history, audit, blacklist, invitations),
the capability evaluator, and CredentialService, which composes them.

Layer rule: auth/ imports stdlib, third-party libraries, and core/ (settings).
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
