"""
Notification fan-out.

Every lifecycle transition that informs a user goes through the dispatcher:
the in-app record commits with the state change, email follows best-effort.
"""
