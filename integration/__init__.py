"""
Integration Module - Collaborators injected into workflow nodes

Reasoning service (LLM adapters), tool invoker, vector retriever and
prompt library. Their failures surface as IntegrationError subclasses.
"""
from integration.base import (
    BaseIntegration,
    IntegrationConfig,
    IntegrationError,
    IntegrationResult,
    ServiceError,
    ToolError
)
from integration.llm_adapter import (
    AnthropicAdapter,
    LLMAdapter,
    LLMConfig,
    LLMResponse,
    OpenAIAdapter,
    ScriptedLLM,
    create_llm_adapter
)
from integration.prompts import PromptError, PromptLibrary
from integration.retriever import (
    HashingEmbedder,
    InMemoryVectorRetriever,
    RetrievedDocument,
    split_text
)
from integration.tool_registry import (
    Tool,
    ToolInvoker,
    ToolRegistry,
    ToolResult,
    ToolSchema
)

__all__ = [
    'BaseIntegration',
    'IntegrationConfig',
    'IntegrationError',
    'IntegrationResult',
    'ServiceError',
    'ToolError',
    'AnthropicAdapter',
    'LLMAdapter',
    'LLMConfig',
    'LLMResponse',
    'OpenAIAdapter',
    'ScriptedLLM',
    'create_llm_adapter',
    'PromptError',
    'PromptLibrary',
    'HashingEmbedder',
    'InMemoryVectorRetriever',
    'RetrievedDocument',
    'split_text',
    'Tool',
    'ToolInvoker',
    'ToolRegistry',
    'ToolResult',
    'ToolSchema'
]
