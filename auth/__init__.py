"""auth/ -- Credentials, sessions, tokens and the route gate for slidingauth.

Layer rule: auth/ imports only stdlib, third-party libraries, core/ and cache/.
It does NOT import from api/ or web/.
api/ and web/ import from auth/, not the other way around.
"""
