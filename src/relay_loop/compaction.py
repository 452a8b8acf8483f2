import json
import math

from loguru import logger

PRESERVED_TAIL_MESSAGES = 6


def estimate_text_tokens(text: str) -> int:
    return math.ceil(len(text.encode("utf-8")) / 4)


def estimate_message_tokens(message: dict) -> int:
    content = message.get("content", "")
    if isinstance(content, str):
        return estimate_text_tokens(content)
    return estimate_text_tokens(json.dumps(content, ensure_ascii=False))


def estimate_tokens(system_prompt: str, messages: list[dict]) -> int:
    return estimate_text_tokens(system_prompt or "") + sum(
        estimate_message_tokens(m) for m in messages
    )


def trim_messages(
    system_prompt: str,
    messages: list[dict],
    budget: int,
    *,
    preserved_tail: int = PRESERVED_TAIL_MESSAGES,
) -> list[dict]:
    """Drop middle history when the estimate exceeds ``budget``.

    The first message and the most recent ``preserved_tail`` messages are kept,
    with one marker message in place of the dropped span. Within budget the
    same list object is returned untouched.
    """
    estimated = estimate_tokens(system_prompt, messages)
    if estimated <= budget:
        return messages

    head_end = 1
    if len(messages) <= head_end + preserved_tail:
        return messages

    tail_start = _adjust_boundary(messages, head_end, len(messages) - preserved_tail)
    if tail_start <= head_end:
        return messages

    dropped = tail_start - head_end
    marker = {
        "role": "user",
        "content": (
            f"[System: {dropped} previous turns were trimmed to fit the context window. "
            "The conversation started with the context above and the most recent turns follow.]"
        ),
    }
    result = [*messages[:head_end], marker, *messages[tail_start:]]
    logger.info(
        f"Context trimming: estimated ~{estimated:,} tokens, budget {budget:,}"
        f" - dropped {dropped} messages"
    )
    return result


def _adjust_boundary(messages: list[dict], head_end: int, tail_start: int) -> int:
    if not _is_tool_result_message(messages[tail_start]):
        return tail_start
    # The tool_use that this result answers sits just before it.
    if tail_start - 1 > head_end:
        return tail_start - 1
    # Nothing would be left to drop; let the orphaned result go with the middle.
    return tail_start + 1


def _is_tool_result_message(message: dict) -> bool:
    if message.get("role") != "user":
        return False
    content = message.get("content")
    if not isinstance(content, list):
        return False
    return any(isinstance(b, dict) and b.get("type") == "tool_result" for b in content)
