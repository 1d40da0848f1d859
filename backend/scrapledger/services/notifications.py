# Overview: Optional change-notification port, fired after a successful commit.

"""
Other viewers learn that data changed through these signals. Delivery is
best-effort: a failing receiver is logged and never turns a committed write
into a failure.

Receivers are connected with blinker, e.g.:

    from scrapledger.services.notifications import transaction_saved

    @transaction_saved.connect
    def on_saved(sender, transaction_id, **extra):
        ...
"""

from __future__ import annotations

import logging

from blinker import Namespace, NamedSignal


logger = logging.getLogger(__name__)

_signals = Namespace()

transaction_saved = _signals.signal("transaction-saved")
transaction_status_changed = _signals.signal("transaction-status-changed")
ledger_entry_appended = _signals.signal("ledger-entry-appended")


def notify(signal: NamedSignal, sender=None, **payload) -> None:
    """Send a signal, logging and swallowing receiver failures."""
    try:
        signal.send(sender, **payload)
    except Exception:
        logger.exception("Change notification %s failed", signal.name)
