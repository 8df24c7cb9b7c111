"""auth/ -- Identity, credentials and the register/login/profile orchestrator.

Layer rule: auth/ may import from core/, cache/ and notify/ (service.py only).
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
