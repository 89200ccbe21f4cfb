# src/rasterpyramid/log.py

import logging
from typing import Union

__all__ = [
    "LOG_FORMAT",
    "setup_logging"
]

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

def setup_logging(level: Union[int, str] = logging.INFO) -> None:
    """
    Configures the standard logging format and level for applications embedding the package.

    Args:
        level (int | str): The logging threshold level, as a number or a name such as 'DEBUG'.
    """
    if isinstance(level, str):
        level = level.upper()
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT
    )
    # rasterio reports every GDAL call at DEBUG level
    logging.getLogger("rasterio").setLevel(max(logging.getLogger().level, logging.INFO))
