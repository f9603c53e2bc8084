"""audit/ -- Audit trail for successful state-changing requests.

Layer rule: audit/ imports only core/, stdlib, and third-party libraries.
The identity an entry is attributed to is read from request.state.user,
so it does NOT import from auth/, api/, or tasks/.
"""
