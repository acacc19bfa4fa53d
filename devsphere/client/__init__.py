"""Client side: HTTP client, tree reconciler and CLI front-ends."""
from __future__ import annotations

__all__ = [
    "ClientRequestError",
    "TreeMirror",
    "WorkspaceClient",
    "WorkspaceReconciler",
]

from devsphere.client.http import ClientRequestError, WorkspaceClient
from devsphere.client.reconciler import TreeMirror, WorkspaceReconciler
