"""
Logging setup module for the Crown core
Configures file and console logging with rotation and secret masking
"""
import logging
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

# form fields / cookie names whose values never reach a log file
SECRET_FIELDS = ("password", "passwd", "new_password", "four_pwd", "passcode", "uid", "blackbox")

_SECRET_PATTERN = re.compile(
    r"(?P<key>\b(?:%s))(?P<sep>['\"]?\s*[=:]\s*['\"]?)(?P<value>[^&;,'\"\s}]+)" % "|".join(SECRET_FIELDS),
    re.IGNORECASE,
)


def mask_secret(value: str) -> str:
    """Keep just enough of a secret to tell two of them apart"""
    if len(value) <= 4:
        return "***"
    return f"{value[:2]}***{value[-2:]}"


class SecretMaskingFilter(logging.Filter):
    """Rewrites key=value / 'key': 'value' secrets in the rendered message"""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = _SECRET_PATTERN.sub(
            lambda m: f"{m.group('key')}{m.group('sep')}{mask_secret(m.group('value'))}", message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def setup_logging(log_config: dict) -> logging.Logger:
    """
    Setup logging configuration

    Args:
        log_config: Dictionary containing logging configuration
            - level: Log level (DEBUG, INFO, WARNING, ERROR)
            - file_path: Path to log file
            - max_bytes: Maximum log file size before rotation
            - backup_count: Number of backup log files to keep
            - console_output: Whether to output to console
            - clear_on_start: Whether to clear log file on each start (default: False)
            - mask_secrets: Mask passwords, passcodes and session ids (default: True)

    Returns:
        Configured "CrownBot" logger
    """
    # Create logs directory if it doesn't exist
    log_file_path = log_config.get("file_path", "logs/crown_bot.log")
    Path(log_file_path).parent.mkdir(parents=True, exist_ok=True)

    # Clear log file on start if configured
    if log_config.get("clear_on_start", False) and Path(log_file_path).exists():
        Path(log_file_path).unlink()

    log_level = getattr(logging, log_config.get("level", "INFO").upper(), logging.INFO)

    logger = logging.getLogger("CrownBot")
    logger.setLevel(log_level)

    # Re-running setup (tests, web reloader) must not stack handlers
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.filters.clear()

    if log_config.get("mask_secrets", True):
        logger.addFilter(SecretMaskingFilter())

    # File keeps timestamps and the module; console shows the bare message
    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(module)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_formatter = logging.Formatter('%(message)s')

    file_handler = RotatingFileHandler(
        log_file_path,
        maxBytes=log_config.get("max_bytes", 10485760),  # 10MB default
        backupCount=log_config.get("backup_count", 5),
        encoding='utf-8'  # league and team names are mostly CJK
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(file_formatter)
    logger.addHandler(file_handler)

    if log_config.get("console_output", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(console_formatter)
        logger.addHandler(console_handler)

    logger.info(f"Logging initialized ({logging.getLevelName(log_level)}, file: {log_file_path})")
    return logger
