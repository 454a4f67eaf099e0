"""
RQ worker entry point for sync jobs.

    python worker.py
"""
from rq import Worker

from greenbook.config import SYNC_QUEUE_NAME
from greenbook.extensions import redis_client
from greenbook.logging_config import configure_logging

if __name__ == '__main__':
    configure_logging()
    # Importing the models registers every table before the first job runs
    import greenbook.models.reference  # noqa: F401
    import greenbook.models.staff  # noqa: F401
    import greenbook.models.sync_schedule  # noqa: F401
    import greenbook.models.sync_log  # noqa: F401

    Worker([SYNC_QUEUE_NAME], connection=redis_client).work()
