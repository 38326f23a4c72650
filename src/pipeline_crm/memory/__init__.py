"""Agent memory of proposals and their outcomes."""

from pipeline_crm.memory.store import AgentMemoryStore, MemoryInput
