import logging
import sys

# Raster and vector IO libraries that flood DEBUG output with driver messages
IO_LOGGERS = ("rasterio", "fiona", "pyogrio")


def setup_logging(level=logging.INFO, verbose: bool = False):
    """Log to stdout for the CLI; verbose switches to DEBUG but keeps the IO libraries at WARNING."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
        force=True,
    )
    for name in IO_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
