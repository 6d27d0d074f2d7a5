"""Kernel services.  Flush-only; WorkflowOrchestrator owns commits."""

from commerce_kernel.services.escalation_engine import EscalationEngine
from commerce_kernel.services.order_lifecycle import OrderLifecycle
from commerce_kernel.services.payment_workflow import PaymentValidationWorkflow
from commerce_kernel.services.relationship_tracker import ClientRelationshipTracker
from commerce_kernel.services.stock_ledger import StockLedger
from commerce_kernel.services.workflow_orchestrator import (
    WorkflowOrchestrator,
    WorkflowSettings,
)

__all__ = [
    "ClientRelationshipTracker",
    "EscalationEngine",
    "OrderLifecycle",
    "PaymentValidationWorkflow",
    "StockLedger",
    "WorkflowOrchestrator",
    "WorkflowSettings",
]
