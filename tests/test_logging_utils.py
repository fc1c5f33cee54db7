import logging

from sdm_background.utils.logging_utils import IO_LOGGERS, setup_logging


def test_verbose_logging_keeps_io_libraries_quiet():
    setup_logging(verbose=True)

    assert logging.getLogger().level == logging.DEBUG
    for name in IO_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING

    setup_logging()
    assert logging.getLogger().level == logging.INFO
