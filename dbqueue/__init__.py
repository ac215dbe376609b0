"""
Database-backed Job Queue

An at-least-once job queue that uses a single relational table as its only
coordination medium: workers lease rows with atomic conditional updates,
run the stored handler, and record success, retry, or permanent failure.
"""

__version__ = "1.0.0"
