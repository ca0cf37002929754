"""Contains the name for the logger of taylorkit modules.

``taylorkit`` uses a simple logging system based on the
`Logging <https://docs.python.org/3/library/logging.html>`__ standard library.
Logging messages are grouped in different levels:

* ``DEBUG``: Bookkeeping of the compiler registry and of the sampling done
    by finite-difference wrappers.
* ``WARNING``: An indication that something unexpected
    happened which may require attention, e.g. a compiler whose tables are
    unusually large.

By default, only messages of level ``WARNING`` are displayed.

Calling applications can configure the format and log level of the displayed messages
by `Configuring Logging <https://docs.python.org/3/howto/logging.html#configuring-logging>`__
for ``taylorkit.logger.taylorkit_logger``, e.g.::

    >>> import logging
    >>> logging.basicConfig(
    ...     level=logging.DEBUG,
    ...     format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    ... )
"""
import logging

logger_name = "taylorkit"
taylorkit_logger = logging.getLogger(logger_name)
