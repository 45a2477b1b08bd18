"""auth/ -- Authentication subsystem for AuthGate.

Layer rule: auth/ imports only stdlib + third-party libraries, plus
core.config from auth/factory.py. It does NOT import from api/.
api/ and the CLI import from auth/, not the other way around.
"""
