"""Core business logic components.

This module exports the main business logic classes:
- Agent: Main orchestrator that coordinates all components
- JobQueue: Concurrency-bounded in-process job queue
- MessageProcessor: Per-job processing state machine
- ClassificationPipeline: Rules-first draft generation
- PolicyEngine: Segment and reply policy resolution
"""

from dm_reply_agent.core.agent import Agent, create_agent, create_store
from dm_reply_agent.core.classification import ClassificationPipeline, NullClassifier
from dm_reply_agent.core.job_queue import JobQueue
from dm_reply_agent.core.normalizer import extract_jobs
from dm_reply_agent.core.policy import PolicyEngine, default_policy, parse_segment
from dm_reply_agent.core.processor import MessageProcessor
from dm_reply_agent.core.rules import KeywordRules

__all__ = [
    "Agent",
    "ClassificationPipeline",
    "JobQueue",
    "KeywordRules",
    "MessageProcessor",
    "NullClassifier",
    "PolicyEngine",
    "create_agent",
    "create_store",
    "default_policy",
    "extract_jobs",
    "parse_segment",
]
