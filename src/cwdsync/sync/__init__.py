from .reconciler import ContextReconciler, ReconcileOutcome, ReconcileState

__all__ = ["ContextReconciler", "ReconcileOutcome", "ReconcileState"]
