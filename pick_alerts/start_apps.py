"""
Startup script running the API, the Celery worker and Celery beat together.
Beat is required: it triggers the periodic upcoming-events scheduler.
"""

import multiprocessing
import subprocess
import sys
import time
import signal
from pathlib import Path
from typing import List

from pick_alerts.utils.logging import get_logger

logger = get_logger()

PROJECT_ROOT = Path(__file__).resolve().parent.parent

SERVICES = {
    "FastAPI": [
        "uvicorn",
        "pick_alerts.main:app",
        "--host",
        "0.0.0.0",
        "--port",
        "8000",
    ],
    "CeleryWorker": [
        "celery",
        "-A",
        "pick_alerts.celery",
        "worker",
        "--loglevel=info",
        "--pool=solo",
    ],
    "CeleryBeat": ["celery", "-A", "pick_alerts.celery", "beat", "--loglevel=info"],
}


def setup_signal_handlers():
    """Setup signal handlers for graceful shutdown"""

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, initiating shutdown...")
        raise KeyboardInterrupt

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)


def run_service(name: str, args: List[str]):
    try:
        logger.info(f"Starting {name} process")
        subprocess.run(
            [sys.executable, "-m", *args], check=True, cwd=str(PROJECT_ROOT)
        )
    except subprocess.CalledProcessError as e:
        logger.error(f"{name} process failed with return code {e.returncode}: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info(f"{name} process interrupted by user")


def check_redis_connection() -> bool:
    """Check if the Celery broker is reachable"""
    import redis
    from pick_alerts.config.settings import settings

    try:
        client = redis.Redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            password=settings.REDIS_PASSWORD or None,
            socket_connect_timeout=5,
        )
        client.ping()
        logger.info("Redis connection successful")
        return True
    except redis.RedisError as e:
        logger.error(f"Redis connection failed: {e}")
        return False


def terminate_processes(processes):
    """Gracefully terminate all processes"""
    logger.info("Initiating graceful shutdown of all services")
    for process in processes:
        if process.is_alive():
            process.terminate()

    for process in processes:
        process.join(timeout=10)
        if process.is_alive():
            logger.warning(f"{process.name} did not terminate gracefully, force killing")
            process.kill()
            process.join()


def main():
    multiprocessing.freeze_support()
    setup_signal_handlers()

    if not check_redis_connection():
        logger.error("Cannot start services without Redis connection")
        sys.exit(1)

    processes = []
    try:
        for name, args in SERVICES.items():
            process = multiprocessing.Process(
                target=run_service, args=(name, args), name=name, daemon=False
            )
            process.start()
            processes.append(process)
            time.sleep(1)

        logger.info("All services started; API on http://localhost:8000")

        while all(process.is_alive() for process in processes):
            time.sleep(1)

        dead = [process.name for process in processes if not process.is_alive()]
        logger.error(f"Service(s) died unexpectedly: {', '.join(dead)}")
    except KeyboardInterrupt:
        logger.info("Shutdown signal received")
    finally:
        terminate_processes(processes)
        logger.info("All services stopped")


if __name__ == "__main__":
    main()
