"""
Modular monolith package.

Each bounded context (jobs, applications, call requests, notifications)
lives under `campus_connect/modules/*`. Routers call the lifecycle functions
here; repositories and external adapters stay behind them.
"""
