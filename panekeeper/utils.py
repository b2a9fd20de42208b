"""
Utility functions for Panekeeper
"""

import logging


def setup_logging(level: str = "INFO"):
    """Setup logging configuration for Panekeeper"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
