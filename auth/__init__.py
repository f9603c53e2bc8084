"""auth/ -- Authentication and authorization package for TaskDesk.

Layer rule: auth/ imports only core/, stdlib, and third-party libraries.
It does NOT import from api/, audit/, or tasks/.
api/ imports from auth/, not the other way around.
"""
