"""
Entity Workflows

Workflow orchestration engine for entity management: ordered step templates,
an instance state machine, actor assignment, SLA tracking and progress
reporting, with per-instance single-writer persistence and an audit trail.
"""

__version__ = "1.0.0"
