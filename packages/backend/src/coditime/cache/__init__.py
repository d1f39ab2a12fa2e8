"""Shared Redis connection.

Learn: Redis is optional. Today it only backs rate limiting; if it is
down at startup the app logs a warning and runs without it.
"""
