"""
Configuration Management for DockerFlow
Centralizes all environment-based configuration and settings
"""

import os
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional


class HealthCheckFilter(logging.Filter):
    """Filter out health check requests to reduce log noise"""
    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()

        # uvicorn access log format: 'IP:PORT - "METHOD /path HTTP/1.1" STATUS'
        if '200 OK' in message or '200' in str(getattr(record, 'args', '')):
            if '/health' in message:
                return False
        return True


def setup_logging():
    """Configure application logging with rotation"""
    from .paths import DATA_DIR

    log_dir = os.path.join(DATA_DIR, 'logs')
    os.makedirs(log_dir, mode=0o700, exist_ok=True)

    root_logger = logging.getLogger()

    # Close and clear any existing handlers to prevent file descriptor leaks
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    level = getattr(logging, AppConfig.LOG_LEVEL.upper(), logging.INFO)
    root_logger.setLevel(level)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # Max 10MB per file, keep 14 backups
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'dockerflow.log'),
        maxBytes=10*1024*1024,
        backupCount=14,
        encoding='utf-8'
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(console_formatter)

    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    uvicorn_access = logging.getLogger("uvicorn.access")
    uvicorn_access.addFilter(HealthCheckFilter())


def get_cors_origins() -> Optional[str]:
    """
    Get CORS origins from environment.

    Returns:
        - Comma-separated string of specific origins if DOCKERFLOW_CORS_ORIGINS is set
        - None to allow all origins (identity is still enforced upstream)
    """
    custom_origins = os.getenv('DOCKERFLOW_CORS_ORIGINS')
    if custom_origins:
        return custom_origins
    return None


class AppConfig:
    """Main application configuration"""

    # Server settings
    HOST = os.getenv('DOCKERFLOW_HOST', '0.0.0.0')
    PORT = int(os.getenv('DOCKERFLOW_PORT', 8080))

    CORS_ORIGINS = get_cors_origins()

    from .paths import DATABASE_URL as DEFAULT_DATABASE_URL, BACKUP_DIR as DEFAULT_BACKUP_DIR

    # Database settings
    DATABASE_URL = os.getenv('DOCKERFLOW_DATABASE_URL', DEFAULT_DATABASE_URL)

    # Logging
    LOG_LEVEL = os.getenv('DOCKERFLOW_LOG_LEVEL', 'INFO')

    # Docker engine. Empty DOCKER_HOST means docker.from_env() defaults (local socket)
    DOCKER_HOST = os.getenv('DOCKERFLOW_DOCKER_HOST', '')
    DOCKER_TIMEOUT = int(os.getenv('DOCKERFLOW_DOCKER_TIMEOUT', 60))

    # Restart convergence polling
    RESTART_POLL_INTERVAL = float(os.getenv('DOCKERFLOW_RESTART_POLL_INTERVAL', 1.0))
    RESTART_POLL_ATTEMPTS = int(os.getenv('DOCKERFLOW_RESTART_POLL_ATTEMPTS', 10))
    RESTART_TIMEOUT_SECONDS = int(os.getenv('DOCKERFLOW_RESTART_TIMEOUT_SECONDS', 30))

    # Volumes
    BACKUP_DIR = os.getenv('DOCKERFLOW_VOLUME_BACKUP_DIR', DEFAULT_BACKUP_DIR)
    BACKUP_HELPER_IMAGE = os.getenv('DOCKERFLOW_BACKUP_HELPER_IMAGE', 'alpine')

    # Traefik routing for provisioned containers
    TRAEFIK_DOMAIN = os.getenv('DOCKERFLOW_TRAEFIK_DOMAIN', 'localhost')
    TRAEFIK_ENTRYPOINT = os.getenv('DOCKERFLOW_TRAEFIK_ENTRYPOINT', 'websecure')

    @classmethod
    def validate(cls):
        """Validate configuration"""
        if cls.PORT < 1 or cls.PORT > 65535:
            raise ValueError(f"Invalid port: {cls.PORT}")

        if cls.RESTART_POLL_INTERVAL <= 0:
            raise ValueError(f"Restart poll interval must be positive: {cls.RESTART_POLL_INTERVAL}")

        if cls.RESTART_POLL_ATTEMPTS < 1:
            raise ValueError(f"Restart poll attempts must be at least 1: {cls.RESTART_POLL_ATTEMPTS}")

        if cls.DOCKER_TIMEOUT < 1:
            raise ValueError(f"Docker timeout must be at least 1 second: {cls.DOCKER_TIMEOUT}")

        return True
