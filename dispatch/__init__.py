"""
Trigger dispatch.

This package hands resolved triggers to the workflow engine:
- TriggerService: trigger, broadcast and cancel operations
- InMemoryWorkflowEngine: job-keeping stand-in for the real engine
- Adapters for topic lookups, the resolution log and transaction validation
"""

from dispatch.adapters import DataStoreTopicResolver, ResolutionLog, WorkflowTransactionValidator
from dispatch.trigger_service import TriggerService, build_trigger_service, generate_transaction_id
from dispatch.workflow_engine import InMemoryWorkflowEngine, JobStatus, WorkflowJob

__all__ = [
    "DataStoreTopicResolver",
    "ResolutionLog",
    "WorkflowTransactionValidator",
    "TriggerService",
    "build_trigger_service",
    "generate_transaction_id",
    "InMemoryWorkflowEngine",
    "JobStatus",
    "WorkflowJob",
]
