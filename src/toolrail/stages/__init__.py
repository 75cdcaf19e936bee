"""Built-in pipeline stages.

Every factory here returns a stage ``async def stage(ctx, next)`` ready for
:meth:`toolrail.pipeline.Pipeline.use`.
"""

from .input import input_to_message

from .conversation_buffer import conversation_buffer, trim_history

from .context_compressor import CompressingModel, context_compressor

from .invariants import find_unanswered_tool_calls, tool_call_invariant

from .error_boundary import ErrorDescriptor, error_boundary, neutral_reply

from .tool_calling import (
    OrchestratorState,
    ToolCallingOrchestrator,
    format_tool_result,
    iterative_tool_calling,
    tool_calling,
)

from .register_tools import register_tools

from .control_flow import (
    Edge,
    Node,
    branch,
    graph,
    loop_until,
    loop_while,
    parallel,
    sequence,
    switch_case,
)

from .usage_tracker import UsageTotals, usage_tracker

from .reply import generate_reply

from .presets import tool_calling_pipeline

__all__ = [
    # input.py
    "input_to_message",
    # conversation_buffer.py
    "conversation_buffer",
    "trim_history",
    # context_compressor.py
    "CompressingModel",
    "context_compressor",
    # invariants.py
    "find_unanswered_tool_calls",
    "tool_call_invariant",
    # error_boundary.py
    "ErrorDescriptor",
    "error_boundary",
    "neutral_reply",
    # tool_calling.py
    "OrchestratorState",
    "ToolCallingOrchestrator",
    "format_tool_result",
    "iterative_tool_calling",
    "tool_calling",
    # register_tools.py
    "register_tools",
    # control_flow.py
    "Edge",
    "Node",
    "branch",
    "graph",
    "loop_until",
    "loop_while",
    "parallel",
    "sequence",
    "switch_case",
    # usage_tracker.py
    "UsageTotals",
    "usage_tracker",
    # reply.py
    "generate_reply",
    # presets.py
    "tool_calling_pipeline",
]
