"""auth/ -- Credential lifecycle package for StarterKit.

Layer rule: auth/ imports only stdlib + third-party libraries (and, in
dependencies.py, FastAPI). It does NOT import from api/ or core/.
api/ imports from auth/, not the other way around.
"""
