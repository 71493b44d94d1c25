from __future__ import annotations

from pathlib import Path
from typing import Any

from loguru import logger


def configure_logging() -> None:
    from app.core.config import get_settings

    settings = get_settings()
    logger.remove()
    log_format = "{time:YYYY-MM-DDTHH:mm:ss.SSSZ} | {level} | {message}\n{exception}"
    logger.add(
        sink=lambda msg: print(msg, end=""),
        format=log_format,
        level=settings.log_level.upper(),
    )

    log_path = settings.log_file_path
    if log_path:
        log_path = log_path.expanduser()
        if _ensure_log_path(log_path):
            try:
                logger.add(
                    str(log_path),
                    format=log_format,
                    level="INFO",
                    encoding="utf-8",
                    enqueue=True,
                )
            except Exception as exc:  # pragma: no cover - defensive logging setup
                logger.warning(
                    f"LOG FILE DISABLED - unable to open file path={log_path} error={exc}"
                )


def _format_meta(meta: dict[str, Any]) -> str:
    return " ".join(f"{key}={meta[key]}" for key in sorted(meta))


def log_error(message: str, **meta) -> None:
    if meta:
        logger.bind(**meta).error(f"{message} | {_format_meta(meta)}")
    else:
        logger.error(message)


def log_info(message: str, **meta) -> None:
    if meta:
        logger.bind(**meta).info(f"{message} | {_format_meta(meta)}")
    else:
        logger.info(message)


def log_warning(message: str, **meta) -> None:
    if meta:
        logger.bind(**meta).warning(f"{message} | {_format_meta(meta)}")
    else:
        logger.warning(message)


def log_debug(message: str, **meta) -> None:
    if meta:
        logger.bind(**meta).debug(f"{message} | {_format_meta(meta)}")
    else:
        logger.debug(message)


def _ensure_log_path(path: Path) -> bool:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.warning(
            f"LOG FILE DISABLED - unable to create directory path={path.parent} "
            f"error={exc}"
        )
        return False
    return True


def log_job_failure(
    queue: str,
    job_id: int,
    *,
    attempts: int,
    error: str | None,
    **extra_meta,
) -> None:
    """
    Record a job that exhausted its attempt budget.

    Entries are written at ``CRITICAL`` level with a fixed ``JOB FAILED``
    prefix so operators can alert on them from any configured sink.

    Format: ``JOB FAILED {queue} | attempts={...} error={...} job_id={...} [extra_meta]``
    """
    meta: dict[str, Any] = {"job_id": job_id, "attempts": attempts}
    if error:
        meta["error"] = error
    meta.update(extra_meta)
    logger.bind(**meta).critical(f"JOB FAILED {queue} | {_format_meta(meta)}")
