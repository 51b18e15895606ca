"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~snowkit.exceptions.SnowkitError` subclass.
Shell scripts wrapping ``snowkit`` can inspect the exit code to tell a
credential problem from an unavailable instance without parsing stderr.

Example::

    $ snowkit table list incident --limit 5
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- credentials were rejected
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The request was malformed (bad arguments, HTTP 4xx client errors)."""

EXIT_AUTH_FAILURE = 3
"""Authentication or authorisation failed (HTTP 401/403, failed token refresh)."""

EXIT_NOT_FOUND = 4
"""The requested record or endpoint was not found (HTTP 404)."""

EXIT_SERVER_ERROR = 5
"""The instance returned an HTTP 5xx error or kept rate limiting us."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_CANCELLED = 130
"""The operation was cancelled (Ctrl-C or a cancellation signal)."""
