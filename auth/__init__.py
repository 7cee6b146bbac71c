"""auth/ -- Session lifecycle for the AutomatedLife client.

Layer rule: auth/ imports core/ and storage/ only.
It does NOT import from api/ at runtime; the request pipeline is handed to
SessionManager through attach(). api/ imports from auth/, not the other way
around.
"""
