"""Built-in CLI sub-commands for authloop.

* :mod:`~authloop.commands.login` -- run the Authorization Code grant and
  print the token.
* :mod:`~authloop.commands.profile` -- save, list, show and delete OAuth
  client profiles.

Each module either exports a :class:`typer.Typer` sub-application (for
multi-command groups like ``profile``) or a plain callback function
registered directly on the root app (for single commands like ``login``).
"""
