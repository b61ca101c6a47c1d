"""jobsync - mirrors the job-tracking document store into a reporting star schema.

Change events arrive over RabbitMQ and are applied by per-entity sync
handlers; a backfill job walks the source directly through the same
handlers for cold start and drift correction.
"""

__version__ = "0.1.0"
