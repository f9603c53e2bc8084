"""tasks/ -- Task domain model and persistence for TaskDesk.

Layer rule: tasks/ imports only core/, stdlib, and third-party libraries.
Ownership (a user only sees their own tasks) is enforced by every TaskStore
query taking a user_id, not by callers filtering results afterwards.
"""
