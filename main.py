"""
Simple CLI runner for the Mail Attachment Extractor API
"""
import sys

import uvicorn
from loguru import logger

from config import settings


def configure_logging():
    """Console plus rotating file sink at the configured level"""
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level.upper())
    logger.add(settings.log_file, rotation="1 day", retention="7 days", level=settings.log_level.upper())


def main():
    """Main entry point for CLI runner"""
    configure_logging()
    logger.info(f"Starting Mail Attachment Extractor on {settings.api_host}:{settings.api_port}")

    uvicorn.run(
        "api_server:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    main()
