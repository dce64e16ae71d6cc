"""LangGraph wrapper for the healing loop - trace harness only.

This wraps the execution loop's nodes in a LangGraph StateGraph so that each
transition is visible as a node in LangGraph Studio / LangSmith.

NO new orchestration logic. Same nodes, same routes, same attempt budget as
run_execution_loop.
"""

from typing import Any, Optional

from langgraph.graph import END, StateGraph
from typing_extensions import TypedDict

from codexcli.execution_loop import (
    ROUTE_EXECUTE,
    ROUTE_INSTALL,
    ROUTE_REFACTOR,
    HealingContext,
    classify_node,
    execution_node,
    install_node,
    prepare_node,
    refactor_node,
)
from codexcli.execution_state import HealingSession, HealingStatus


class HealingGraphState(TypedDict):
    """State for the healing graph."""
    session: HealingSession
    context: Any  # HealingContext, passed through state
    route: Optional[str]


# --- Graph Nodes ---

def node_start(state: HealingGraphState) -> dict:
    """Initialize the session - set status to RUNNING."""
    state["session"].status = HealingStatus.RUNNING
    return {"session": state["session"], "route": None}


def node_prepare(state: HealingGraphState) -> dict:
    """Pre-install packages the current block imports."""
    return {"session": prepare_node(state["session"], state["context"])}


def node_execute(state: HealingGraphState) -> dict:
    """Run the current block once."""
    return {"session": execution_node(state["session"], state["context"])}


def node_classify(state: HealingGraphState) -> dict:
    """Diagnose the failure and pick install / refactor / stop."""
    route = classify_node(state["session"], state["context"])
    return {"session": state["session"], "route": route}


def node_install(state: HealingGraphState) -> dict:
    """Reinstall missing packages."""
    route = install_node(state["session"], state["context"])
    return {"session": state["session"], "route": route}


def node_refactor(state: HealingGraphState) -> dict:
    """Ask the collaborator for a revised block."""
    return {"session": refactor_node(state["session"], state["context"])}


# --- Conditional Edges ---

def after_execute(state: HealingGraphState) -> str:
    if state["session"].status == HealingStatus.RUNNING:
        return "classify"
    return "end"


def after_classify(state: HealingGraphState) -> str:
    return {ROUTE_INSTALL: "install", ROUTE_REFACTOR: "refactor"}.get(state["route"], "end")


def after_install(state: HealingGraphState) -> str:
    return "execute" if state["route"] == ROUTE_EXECUTE else "refactor"


def after_refactor(state: HealingGraphState) -> str:
    if state["session"].status == HealingStatus.RUNNING:
        return "prepare"
    return "end"


# --- Graph Builder ---

def build_execution_graph() -> StateGraph:
    """
    Build the healing graph.

    Flow:
        start -> prepare -> execute -> (done?) -> end
                               ^          -> classify -> install -> execute
                               |                      -> refactor -> prepare
                               |                      -> end (fatal)
    """
    graph = StateGraph(HealingGraphState)

    graph.add_node("start", node_start)
    graph.add_node("prepare", node_prepare)
    graph.add_node("execute", node_execute)
    graph.add_node("classify", node_classify)
    graph.add_node("install", node_install)
    graph.add_node("refactor", node_refactor)

    graph.set_entry_point("start")

    graph.add_edge("start", "prepare")
    graph.add_edge("prepare", "execute")
    graph.add_conditional_edges("execute", after_execute, {"classify": "classify", "end": END})
    graph.add_conditional_edges(
        "classify",
        after_classify,
        {"install": "install", "refactor": "refactor", "end": END},
    )
    graph.add_conditional_edges("install", after_install, {"execute": "execute", "refactor": "refactor"})
    graph.add_conditional_edges("refactor", after_refactor, {"prepare": "prepare", "end": END})

    return graph


def run_execution_graph(session: HealingSession, ctx: HealingContext) -> HealingSession:
    """
    Run the healing graph and return the final session.

    This is the traced equivalent of run_execution_loop().
    """
    compiled = build_execution_graph().compile()

    initial_state: HealingGraphState = {
        "session": session,
        "context": ctx,
        "route": None,
    }

    # At most prepare/execute/classify/install-or-refactor per attempt
    recursion_limit = 5 * session.max_attempts + 10
    final_state = compiled.invoke(initial_state, config={"recursion_limit": recursion_limit})
    return final_state["session"]


# Pre-compiled graph for Studio discovery
execution_graph = build_execution_graph().compile()
