import logging
import sys
from src.config.settings import settings

def setup_logger():
    """Configure and return a logger instance."""
    logger = logging.getLogger("knowledge_assistant")

    # Only add handlers if they haven't been added already
    if not logger.handlers:
        logger.setLevel(logging.INFO)

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

        try:
            settings.LOGS_DIR.mkdir(parents=True, exist_ok=True)

            file_handler = logging.FileHandler(settings.LOGS_DIR / "app.log")
            file_handler.setLevel(logging.INFO)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning(f"Could not setup file logging: {e}")

    return logger

# Create a singleton logger instance
logger = setup_logger()
