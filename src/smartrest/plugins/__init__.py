"""Plugin package initialiser (source of truth).

Keep this file lightweight: concrete plugins are not imported here, so
importing ``smartrest.plugins`` has no side effects. Concrete plugin modules
(``logging``) register themselves when imported (``smartrest.__init__``
imports them eagerly).
"""

__all__: list[str] = []
