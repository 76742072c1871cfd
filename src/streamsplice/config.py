import logging
import os

from pydantic import BaseModel

from streamsplice.envelope import OutputMode

LOG_FORMAT = '%(asctime)s:%(name)s:%(levelname)s:%(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class Settings(BaseModel):
    """Dispatcher and output settings.

    ``max_retries`` defaults to 0: failed dispatches are reported, never
    retried, so any retry policy stays with the caller.
    """

    api_key: str | None = None
    base_url: str | None = None
    timeout: float = 600.0
    max_retries: int = 0
    output_mode: OutputMode = OutputMode.RAW
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        values = {
            "api_key": os.getenv("OPENAI_API_KEY"),
            "base_url": os.getenv("OPENAI_BASE_URL"),
            "timeout": os.getenv("STREAMSPLICE_TIMEOUT"),
            "output_mode": os.getenv("STREAMSPLICE_OUTPUT_MODE"),
            "log_level": os.getenv("STREAMSPLICE_LOG_LEVEL"),
        }
        return cls(**{k: v for k, v in values.items() if v is not None})

    def setup_logging(self, log_file: str | None = None) -> None:
        configure_logging(self.log_level, log_file=log_file)


def configure_logging(
    level: str | int = logging.INFO,
    log_file: str | None = None,
) -> None:
    """Send streamsplice logs to stderr, and to *log_file* when given."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
    )
