# chat/__init__.py
from .actions import dispatch_webhook, maybe_dispatch
from .inference import LangChainInferenceService, invoke_model
from .pipeline import create_chat_graph, run_chat
from .prompt_builder import assemble_messages, build_system_prompt, select_turns
from .response_parser import Action, ParsedReply, action_response, apply_action_policy, parse_reply

__all__ = [
    "dispatch_webhook",
    "maybe_dispatch",
    "LangChainInferenceService",
    "invoke_model",
    "create_chat_graph",
    "run_chat",
    "assemble_messages",
    "build_system_prompt",
    "select_turns",
    "Action",
    "ParsedReply",
    "action_response",
    "apply_action_policy",
    "parse_reply",
]
