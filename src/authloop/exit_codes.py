"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~authloop.exceptions.AuthloopError` subclass.
Shell wrappers can inspect the exit code to tell a provider rejection from
a timeout without parsing stderr.

Example::

    $ authloop login --profile github --timeout 60
    $ echo $?
    130   # EXIT_CANCELLED -- no callback arrived before the deadline
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred (including configuration problems)."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required options."""

EXIT_AUTH_FAILURE = 3
"""The provider denied the authorization or the code exchange failed."""

EXIT_ADDRESS_UNAVAILABLE = 6
"""None of the candidate addresses could be bound for the local server."""

EXIT_CANCELLED = 130
"""The flow was cancelled (Ctrl-C or the deadline passed) before a callback arrived."""
