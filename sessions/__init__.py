"""sessions/ -- Server-side session lifecycle for Chirp.

Layer rule: sessions/ may import from auth/ and core/. It does NOT import
from api/ or web/.
"""
