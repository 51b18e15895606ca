"""Built-in CLI sub-commands for snowkit.

* :mod:`~snowkit.commands.request` -- call any endpoint through the request core.
* :mod:`~snowkit.commands.table` -- CRUD on table records.
* :mod:`~snowkit.commands.auth` -- inspect, refresh, and drop cached credentials.
* :mod:`~snowkit.commands.config` -- view and modify global settings.

Multi-command groups export a :class:`typer.Typer` sub-application; single
commands export a plain callback registered on the root app.
"""
