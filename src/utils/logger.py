import os
import sys

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - "
    "<level>{message}</level>"
)
GRADUATION_TAG = "[GRADUATED]"


def _is_graduation(record) -> bool:
    return record["message"].startswith(GRADUATION_TAG)


def setup_logger(
    *,
    process: str = "indexer",
    log_dir: str = "logs",
    json_logs: bool = False,
    level: str = "INFO",
) -> None:
    """Route loguru output for one indexer process.

    LOG_LEVEL env overrides the console level. Each process (the live
    indexer, the operator scripts) writes its own DEBUG file under
    ``log_dir`` so a gap scan never interleaves with the live run.
    Graduations also go to a long-lived ``graduations.log`` that outlives
    the rotated debug files.
    """
    console_level = os.getenv("LOG_LEVEL", level).upper()
    logger.remove()

    if json_logs:
        logger.add(sys.stdout, serialize=True, level=console_level)
    else:
        logger.add(sys.stdout, format=CONSOLE_FORMAT, level=console_level, colorize=True)

    logger.add(
        f"{log_dir}/{process}_{{time:YYYY-MM-DD}}.log",
        rotation="50 MB",
        retention="7 days",
        compression="gz",
        level="DEBUG",
        serialize=json_logs,
    )
    logger.add(
        f"{log_dir}/graduations.log",
        filter=_is_graduation,
        level="INFO",
        rotation="10 MB",
        retention="90 days",
        serialize=json_logs,
    )
