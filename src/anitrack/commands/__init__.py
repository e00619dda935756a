"""Built-in CLI commands for anitrack.

* :mod:`~anitrack.commands.auth` -- ``login``, ``logout`` and ``status``.
* :mod:`~anitrack.commands.anime` -- ``search`` and ``userlist``.

Each module exports plain callback functions that :func:`anitrack.app.main`
registers directly on the root app.
"""
