# chat/inference.py
"""
Single-attempt model invocation.

The inference service is opaque: anything with run(model, inputs) -> result.
There is no retry loop here; a failure or timeout surfaces as a 502 and the
visitor decides whether to resend.
"""

from typing import Any, Dict, List

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from config import INFERENCE_TIMEOUT_SECONDS, UPSTREAM_FAILURE_MESSAGE
from utils.errors import UpstreamError
from utils.logger import get_chat_logger

logger = get_chat_logger()

MESSAGE_TYPES = {
    "system": SystemMessage,
    "user": HumanMessage,
    "assistant": AIMessage,
}


def to_langchain_messages(messages: List[Dict[str, str]]) -> List[BaseMessage]:
    return [MESSAGE_TYPES[m["role"]](content=m["content"]) for m in messages]


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [p.get("text", "") if isinstance(p, dict) else str(p) for p in content]
        return "".join(parts)
    return ""


class LangChainInferenceService:
    """OpenAI chat models through LangChain, answering in the {"response", "usage"} shape."""

    def __init__(self, timeout: float = INFERENCE_TIMEOUT_SECONDS):
        self.timeout = timeout

    def run(self, model: str, inputs: Dict[str, Any]) -> Dict[str, Any]:
        llm = ChatOpenAI(
            model=model,
            temperature=inputs.get("temperature"),
            max_tokens=inputs.get("max_tokens"),
            timeout=self.timeout,
            max_retries=0,
        )
        reply = llm.invoke(to_langchain_messages(inputs["messages"]))

        result: Dict[str, Any] = {"response": _content_text(reply.content)}
        usage = getattr(reply, "usage_metadata", None)
        if usage:
            result["usage"] = {
                "input_tokens": usage.get("input_tokens", 0),
                "output_tokens": usage.get("output_tokens", 0),
                "total_tokens": usage.get("total_tokens", 0),
            }
        return result


def invoke_model(service, model: str, messages: List[Dict[str, str]], max_tokens: int, temperature: float) -> Any:
    """
    One call to the inference service.

    Raises:
        UpstreamError: On any failure of the service (network, status, timeout, bad payload)
    """
    inputs = {"messages": messages, "max_tokens": max_tokens, "temperature": temperature}
    try:
        return service.run(model, inputs)
    except Exception as e:
        logger.error(f"Inference call to {model} failed: {type(e).__name__}: {e}")
        raise UpstreamError(UPSTREAM_FAILURE_MESSAGE, retry_after=5, detail=f"{type(e).__name__}: {e}")
