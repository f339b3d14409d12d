from langgraph.graph import END, StateGraph

from room_doc_chat.graph.nodes import contextualize_node, generate_node, retrieve_node
from room_doc_chat.graph.state import GraphState


def build_graph():
    """
    contextualize -> retrieve -> generate

    Memory is not touched by the graph; the orchestrator appends the turn
    only once the whole graph has succeeded.
    """
    graph = StateGraph(GraphState)

    graph.add_node("contextualize", contextualize_node)
    graph.add_node("retrieve", retrieve_node)
    graph.add_node("generate", generate_node)

    # set the entry point of the graph flow
    graph.set_entry_point("contextualize")

    graph.add_edge("contextualize", "retrieve")
    graph.add_edge("retrieve", "generate")
    graph.add_edge("generate", END)

    return graph.compile()
