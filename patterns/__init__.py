"""Workflows built on the engine"""
from patterns.chaining import build_chaining_graph, run_chaining
from patterns.fallback import build_fallback_graph, extract_city, run_fallback
from patterns.goal_setting import add_comment_header, build_goal_loop, run_goal_setting
from patterns.memory import Conversation, build_conversation_graph, history_summarizer, run_conversation
from patterns.parallel import build_parallel_graph, run_parallel
from patterns.rag import build_rag_graph, run_rag
from patterns.reflection import build_reflection_loop, run_reflection
from patterns.routing import build_routing_graph, run_routing
from patterns.support_agent import CustomerInfo, build_support_graph, run_support_agent
from patterns.tool_agent import build_tool_agent_graph, run_tool_agent

__all__ = [
    'build_chaining_graph',
    'run_chaining',
    'build_fallback_graph',
    'extract_city',
    'run_fallback',
    'add_comment_header',
    'build_goal_loop',
    'run_goal_setting',
    'Conversation',
    'build_conversation_graph',
    'history_summarizer',
    'run_conversation',
    'build_parallel_graph',
    'run_parallel',
    'build_rag_graph',
    'run_rag',
    'build_reflection_loop',
    'run_reflection',
    'build_routing_graph',
    'run_routing',
    'CustomerInfo',
    'build_support_graph',
    'run_support_agent',
    'build_tool_agent_graph',
    'run_tool_agent',
]
