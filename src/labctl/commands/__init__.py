"""Built-in CLI sub-commands for labctl.

* :mod:`~labctl.commands.auth` -- log in to GitLab hosts and manage the
  stored credentials.

Each module exports a :class:`typer.Typer` sub-application that
:func:`labctl.app.main` attaches to the root command.
"""
