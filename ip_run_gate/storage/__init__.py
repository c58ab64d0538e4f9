"""
Event log storage.

Append-only usage records with interchangeable local and GCS backends.
"""
