"""Small process-local helpers used by the services and the router."""
