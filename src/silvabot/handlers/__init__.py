"""Auxiliary subscribers that run beside the dispatcher.

Each one binds to the socket's event bus on its own, keeps its own state and
logs (never raises) its own failures.
"""

from silvabot.handlers.antidelete import AntiDeleteHandler
from silvabot.handlers.newsletter import NewsletterFollower
from silvabot.handlers.status import StatusHandler

__all__ = ["AntiDeleteHandler", "NewsletterFollower", "StatusHandler"]
