"""api/ -- FastAPI adapter over the auth core.

Layer rule: api/ imports from auth/ and core/. Nothing imports from api/.
"""
