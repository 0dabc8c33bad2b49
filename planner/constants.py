"""API route configuration."""

# Base prefix for all HTTP routes
API_PREFIX = "/api"

# Replication routes (absolute)
PLANNER_PREFIX = f"{API_PREFIX}/planner"

