from __future__ import annotations

from arq import run_worker

from linkvault.core.logging import configure_logging
from linkvault.workers.notification_worker import WorkerSettings


def main() -> None:
    # Same as `arq linkvault.workers.notification_worker.WorkerSettings`.
    configure_logging()
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
