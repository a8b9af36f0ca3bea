#!/usr/bin/env python3
"""Start a Celery worker for bulk jobs, imports and notifications.

Extra arguments are passed through, e.g. ``--beat`` to also run the
price-history expiry schedule in the same process.
"""

import sys
import warnings

# Suppress the superuser privilege warning in containers
warnings.filterwarnings("ignore", category=UserWarning, message=".*superuser privileges.*")
warnings.filterwarnings("ignore", category=RuntimeWarning, message=".*superuser privileges.*")

from catalog_bulk.workers.celery_app import celery_app  # noqa: E402

if __name__ == "__main__":
    celery_app.worker_main(
        [
            "worker",
            "--loglevel=info",
            "--queues=bulk,imports,notifications",
            "--pool=solo",
            "--without-mingle",
            "--without-gossip",
            *sys.argv[1:],
        ]
    )
