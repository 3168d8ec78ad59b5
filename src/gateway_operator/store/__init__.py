"""Object stores used by the reconcilers."""

from .base import ObjectStore, label_selector, matches_labels, merge_patch
from .kubernetes import KubernetesObjectStore, load_kubernetes_config
from .memory import InMemoryObjectStore

__all__ = [
    "ObjectStore",
    "KubernetesObjectStore",
    "InMemoryObjectStore",
    "load_kubernetes_config",
    "label_selector",
    "matches_labels",
    "merge_patch",
]
