"""Client-side tooling for a Paintworks server.

Modules
-------
api_client
    ``requests`` wrapper for the painting endpoints.
placeholder_store
    JSON persistence of in-flight placeholders, keyed by title.
reconciler
    Merges optimistic placeholders with polled paintings.
poller
    Per-title polling sessions with cancellation.
cli
    The ``paintworks-client`` console script.
"""

from paintworks.client.api_client import PaintworksClient, PaintworksClientError
from paintworks.client.placeholder_store import PlaceholderStore
from paintworks.client.poller import PollingSession, TitleWatcher
from paintworks.client.reconciler import ClientReconciler, Placeholder, Real

__all__ = [
    "ClientReconciler",
    "PaintworksClient",
    "PaintworksClientError",
    "Placeholder",
    "PlaceholderStore",
    "PollingSession",
    "Real",
    "TitleWatcher",
]
