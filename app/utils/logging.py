# app/utils/logging.py
import logging
import sys
import os
from logging.handlers import RotatingFileHandler
from datetime import datetime
from typing import Optional
from sqlmodel import Session

from app.models import OperationLog, OperationKind
from app.config import APP_ENV, LOG_DIR

def setup_logging():
    """
    Configures application-wide logging with both file and console handlers.
    Safe to call more than once; handlers are only attached the first time.
    """
    root_logger = logging.getLogger()
    if getattr(root_logger, "_cryostock_configured", False):
        return logging.getLogger("cryostock")

    # Determine log level based on environment
    log_level = logging.DEBUG if APP_ENV == "development" else logging.INFO

    # Define standard format for log entries
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # File handler: Rotates after 10MB, keeps 5 old logs
    os.makedirs(LOG_DIR, exist_ok=True)
    file_handler = RotatingFileHandler(
        os.path.join(LOG_DIR, 'cryostock.log'),
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)

    # Console handler: Outputs to standard out
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)

    root_logger.setLevel(log_level)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)
    root_logger._cryostock_configured = True

    # Reduce noise from underlying libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("passlib").setLevel(logging.ERROR)

    return logging.getLogger("cryostock")

# Initialize the application logger
logger = setup_logging()

def log_operation(
    session: Session,
    operation: OperationKind,
    quantity: int,
    operator: Optional[str] = None,
    batch_id: Optional[int] = None,
    cell_id: Optional[int] = None,
    reason: Optional[str] = None,
    remark: Optional[str] = None
) -> OperationLog:
    """
    Appends an inbound/outbound entry to the OperationLog audit trail.
    The entry joins the caller's transaction; the caller commits.
    """
    entry = OperationLog(
        operation=operation,
        quantity=quantity,
        operator=operator,
        batch_id=batch_id,
        cell_id=cell_id,
        reason=reason,
        remark=remark,
        created_at=datetime.now()
    )
    session.add(entry)
    logger.info(f"AUDIT: {operation.value} qty={quantity} batch={batch_id} cell={cell_id} by={operator}")
    return entry
