"""auth/ -- Credential verification for Chirp.

Layer rule: auth/ imports only core/, stdlib and third-party libraries.
It does NOT import from api/, web/, or sessions/.
sessions/, api/ and web/ import from auth/, not the other way around.
"""
