import logging
import time
from fastapi import Request
from logging.handlers import TimedRotatingFileHandler
import gzip
import shutil
import os

from config import REQUEST_LOG_FILE, SYNC_LOG_FILE

LOG_MAX_SIZE = 20 * 1024 * 1024  # 20 MB
LOG_BACKUP_COUNT = 5             # Keep last 5 log files
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

SYNC_LOGGERS = ("sync_coordinator", "record_store", "remote_client", "main")


def _compress_old_log(source_path):
    if os.path.exists(source_path):
        compressed_path = f"{source_path}.gz"
        with open(source_path, "rb") as f_in, gzip.open(compressed_path, "wb") as f_out:
            shutil.copyfileobj(f_in, f_out)
        os.remove(source_path)


def make_rotating_handler(log_file: str) -> TimedRotatingFileHandler:
    """
    Weekly rotating handler with a size cap.
    Rotation:
      - Weekly (every Monday at midnight)
      - Max file size: 20 MB
      - Automatically compresses old logs
    """
    handler = TimedRotatingFileHandler(
        log_file,
        when="W0",             # Rotate weekly (Monday)
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8",
        delay=True
    )

    old_emit = handler.emit
    def emit_with_size_check(record):
        if os.path.exists(log_file) and os.path.getsize(log_file) >= LOG_MAX_SIZE:
            handler.doRollover()
        old_emit(record)

    handler.emit = emit_with_size_check
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    log_dir = os.path.dirname(log_file) or "."
    old_doRollover = handler.doRollover
    def doRollover_and_compress():
        old_doRollover()
        # Compress previous log files
        for file in os.listdir(log_dir):
            if file.startswith(os.path.basename(log_file) + ".") and not file.endswith(".gz"):
                file_path = os.path.join(log_dir, file)
                if os.path.isfile(file_path):
                    _compress_old_log(file_path)

    handler.doRollover = doRollover_and_compress
    return handler


def setup_logger(log_file: str = REQUEST_LOG_FILE):
    """Request performance logger."""
    logger = logging.getLogger("performance_logger")
    logger.setLevel(logging.INFO)
    if not logger.handlers:
        logger.addHandler(make_rotating_handler(log_file))
    return logger


def setup_sync_logging(log_file: str = SYNC_LOG_FILE, level=logging.INFO):
    """Send queue, client and coordinator logs to one rotating file."""
    handler = make_rotating_handler(log_file)
    for name in SYNC_LOGGERS:
        logger = logging.getLogger(name)
        logger.setLevel(level)
        if not any(isinstance(h, TimedRotatingFileHandler) for h in logger.handlers):
            logger.addHandler(handler)
    return handler


def create_logging_middleware(app, logger):
    """
    Adds a middleware to log request & response time, IP and status.
    """
    @app.middleware("http")
    async def log_request_response_time(request: Request, call_next):
        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "-"
        method = request.method
        path = request.url.path

        response = await call_next(request)
        process_time = time.perf_counter() - start_time

        logger.info(
            f"IP={client_ip} | {method} {path} | Status={response.status_code} | "
            f"Time={process_time:.4f}s"
        )
        response.headers["X-Process-Time"] = str(round(process_time, 4))
        return response

    return app
