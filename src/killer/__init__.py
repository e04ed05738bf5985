"""
Killer - A command-line agent built around a chat-completions API.

The agent calls the model, runs the tools it asks for, feeds the results
back and repeats until the model gives a final answer. Around that loop
sit the constraints that keep it safe to run unattended:

1. Bounded iterations: at most max_iterations model calls per run
2. Bounded context: tool output is compressed, and a hard ceiling is never exceeded
3. Bounded tools: every tool call has a timeout and leaves no stray processes
4. Human confirmation: destructive commands run only after an explicit yes
"""

__version__ = "0.1.0"

from killer.confirmation import ConfirmationGate
from killer.context import CompressionError, ContextBudgetManager
from killer.invoker import ToolInvoker
from killer.llm import ChatResponse, LLMClient, LLMError
from killer.loop import AgentLoop, LoopResult
from killer.session import AgentSession, Conversation
from killer.tools import Tool, ToolRegistry
from killer.types import InvocationResult, LoopPhase, Message, Role, ToolCall

__all__ = [
    "AgentLoop",
    "AgentSession",
    "ChatResponse",
    "CompressionError",
    "ConfirmationGate",
    "ContextBudgetManager",
    "Conversation",
    "InvocationResult",
    "LLMClient",
    "LLMError",
    "LoopPhase",
    "LoopResult",
    "Message",
    "Role",
    "Tool",
    "ToolCall",
    "ToolInvoker",
    "ToolRegistry",
]
