# chat/pipeline.py
"""
The per-request chat pipeline as a LangGraph state graph:

    retrieve -> assemble -> generate -> parse

Admission happens before the graph runs; budget charging and webhook
dispatch happen after it returns. No checkpointer: conversation history
lives in the browser and arrives with every request.
"""

import time
from typing import Any, Dict, List, TypedDict

from langgraph.graph import END, START, StateGraph

from bots.models import BotConfig
from knowledge import retrieve
from utils.logger import get_chat_logger
from utils.text import estimate_tokens

from .inference import invoke_model
from .prompt_builder import assemble_messages, latest_question, select_turns
from .response_parser import ParsedReply, apply_action_policy, extract_usage, finalize_message, parse_reply

logger = get_chat_logger()


class ChatState(TypedDict, total=False):
    """State for the chat graph."""
    bot: BotConfig
    turns: List[Dict[str, str]]
    question: str
    knowledge: str
    messages: List[Dict[str, str]]
    raw: Any
    reply: ParsedReply
    tokens: int


def create_chat_graph(store, inference, embedder):
    """Compile the graph around the given store and services."""

    # Node 1: Retrieve context
    def retrieve_context(state: ChatState) -> dict:
        knowledge = retrieve(state["bot"], state["question"], store, embedder)
        return {"knowledge": knowledge}

    # Node 2: Build the bounded message list
    def assemble_prompt(state: ChatState) -> dict:
        messages = assemble_messages(state["bot"], state["knowledge"], state["turns"])
        return {"messages": messages}

    # Node 3: Single model call
    def generate_answer(state: ChatState) -> dict:
        config = state["bot"]
        start_time = time.time()
        raw = invoke_model(inference, config.model, state["messages"], config.max_tokens, config.temperature)
        logger.info(f"[{config.bot_id}] {config.model} answered in {time.time() - start_time:.2f}s")
        return {"raw": raw}

    # Node 4: Reply, action policy and token usage
    def parse_answer(state: ChatState) -> dict:
        config = state["bot"]
        parsed = parse_reply(state["raw"])
        reply = ParsedReply(
            message=finalize_message(parsed.message, config),
            action=apply_action_policy(config, parsed.action),
        )
        if parsed.action is not None and reply.action is None:
            logger.info(f"[{config.bot_id}] Discarded '{parsed.action.type.value}' action by policy")

        tokens = extract_usage(state["raw"])
        if tokens is None:
            tokens = estimate_tokens(*(m["content"] for m in state["messages"]), reply.message)
        return {"reply": reply, "tokens": tokens}

    graph = StateGraph(ChatState)

    graph.add_node("retrieve", retrieve_context)
    graph.add_node("assemble", assemble_prompt)
    graph.add_node("generate", generate_answer)
    graph.add_node("parse", parse_answer)

    graph.add_edge(START, "retrieve")
    graph.add_edge("retrieve", "assemble")
    graph.add_edge("assemble", "generate")
    graph.add_edge("generate", "parse")
    graph.add_edge("parse", END)

    return graph.compile()


def run_chat(graph, config: BotConfig, raw_messages: Any) -> ChatState:
    """Run the graph for one admitted request."""
    turns = select_turns(config, raw_messages)
    return graph.invoke({"bot": config, "turns": turns, "question": latest_question(turns)})
