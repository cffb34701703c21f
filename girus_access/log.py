"""Logging setup for the girus-access command line."""
import sys
import logging


class SafeUnicodeFilter(logging.Filter):
    """Filter to sanitize log messages containing surrogate characters.

    kubectl output and pod exec streams are decoded leniently and may carry
    lone surrogates (U+D800 to U+DFFF); writing those to a UTF-8 stream raises
    UnicodeEncodeError.
    """

    @staticmethod
    def _clean(value):
        if not isinstance(value, str):
            return value
        try:
            value.encode("utf-8")
        except UnicodeEncodeError:
            return value.encode("utf-8", errors="replace").decode("utf-8")
        return value

    def filter(self, record):
        record.msg = self._clean(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(self._clean(arg) for arg in record.args)
        return True


def configure_logging(verbose=False, stream=None):
    """
    Configure the root logger for command-line use.

    Args:
        verbose: Log DEBUG messages and logger names (default: False)
        stream: Output stream (default: stdout)

    Returns:
        logging.Handler: The installed handler
    """
    handler = logging.StreamHandler(stream or sys.stdout)
    if verbose:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    else:
        handler.setFormatter(logging.Formatter("%(message)s"))
    handler.addFilter(SafeUnicodeFilter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        if getattr(existing, "_girus_handler", False):
            root.removeHandler(existing)
    handler._girus_handler = True
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.INFO)

    # kubernetes/urllib3 are noisy at DEBUG
    for name in ("kubernetes", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler
