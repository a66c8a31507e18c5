"""Core infrastructure: logging, exceptions, database access, models and schemas."""
