"""Agent definitions and the tool-calling agent loop."""

from pipeline_crm.agents.catalog import AgentCatalog, AgentDefinition
