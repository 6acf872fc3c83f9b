"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~ravelry.exceptions.RavelryError` subclass.
Shell wrappers can inspect the exit code to tell a rejected credential
from a rate limit or a network failure without parsing stderr.

Example::

    $ ravelry whoami
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- no usable credential
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_AUTH_FAILURE = 3
"""Authentication failed: no credential, refresh rejected, or authorization aborted."""

EXIT_API_ERROR = 4
"""The API rejected the request with a non-success status."""

EXIT_RATE_LIMITED = 5
"""The API answered HTTP 429; retry after the advertised delay."""

EXIT_TRANSPORT_ERROR = 6
"""A network-level error occurred, or the server broke its payload contract."""

EXIT_NOT_MODIFIED = 7
"""A conditional request matched the supplied ETag (HTTP 304)."""
