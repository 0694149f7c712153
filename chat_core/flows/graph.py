"""LangGraph construction for one chat turn.

Idle -> drafting -> awaiting -> streaming -> finalizing -> Idle，
streaming 和 finalizing 出错时进入 error 节点。节点实现由编排器提供。
"""

from __future__ import annotations

from typing import Protocol

from langgraph.graph import END, StateGraph
from langgraph.graph.state import CompiledStateGraph

from chat_core.flows.state import TurnState


class TurnNodes(Protocol):
    async def drafting_node(self, state: TurnState) -> TurnState:
        ...

    async def awaiting_node(self, state: TurnState) -> TurnState:
        ...

    async def streaming_node(self, state: TurnState) -> TurnState:
        ...

    async def finalizing_node(self, state: TurnState) -> TurnState:
        ...

    async def error_node(self, state: TurnState) -> TurnState:
        ...


def after_streaming(state: TurnState) -> str:
    if state.get("error_kind"):
        return "error"
    return "finalizing"


def after_finalizing(state: TurnState) -> str:
    if state.get("error_kind"):
        return "error"
    return "done"


def build_turn_graph(nodes: TurnNodes) -> CompiledStateGraph:
    graph = StateGraph(TurnState)
    graph.add_node("drafting", nodes.drafting_node)
    graph.add_node("awaiting", nodes.awaiting_node)
    graph.add_node("streaming", nodes.streaming_node)
    graph.add_node("finalizing", nodes.finalizing_node)
    graph.add_node("error", nodes.error_node)
    graph.set_entry_point("drafting")
    graph.add_edge("drafting", "awaiting")
    graph.add_edge("awaiting", "streaming")
    graph.add_conditional_edges("streaming", after_streaming, {"error": "error", "finalizing": "finalizing"})
    graph.add_conditional_edges("finalizing", after_finalizing, {"error": "error", "done": END})
    graph.add_edge("error", END)
    return graph.compile()
