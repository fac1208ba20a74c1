"""Core infrastructure: errors, logging, middleware, security."""
