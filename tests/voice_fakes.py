"""Offline stand-ins for the voice API used across tests."""

import json
from datetime import datetime, timedelta, timezone

from leadlink.models import ConversationDetail, ConversationPage, ConversationSummary
from leadlink.voice_client import ApiError, ApiResult

# Lead creation time used by most scenarios (naive UTC, as stored in the database)
T0 = datetime(2025, 3, 1, 12, 0, 0)

LEAD_NAME = "Дмитрий Иванов"
LEAD_PHONE = "+375291234567"


def unix(dt: datetime) -> int:
    return int(dt.replace(tzinfo=timezone.utc).timestamp())


def lead_tool_message(args, tool_name="SendToCRMLead", style="native", encode=True) -> dict:
    """A transcript turn carrying one tool call."""
    raw = json.dumps(args, ensure_ascii=False) if encode else args
    if style == "function":
        call = {"function": {"name": tool_name, "arguments": raw}}
    else:
        call = {"tool_name": tool_name, "params_as_json": raw}
    return {"role": "assistant", "message": None, "tool_calls": [call]}


def conversation(conversation_id, start, messages=None, status="done", agent_id="agent_test") -> dict:
    messages = messages or []
    return {
        "conversation_id": conversation_id,
        "agent_id": agent_id,
        "agent_name": "Widget agent",
        "start_time_unix_secs": unix(start),
        "call_duration_secs": 95,
        "message_count": len(messages),
        "status": status,
        "call_successful": "success",
        "transcript": [{"role": "user", "message": "Здравствуйте"}] + messages,
    }


def perfect_conversation(conversation_id="conv_match", offset=timedelta(minutes=10)) -> dict:
    return conversation(
        conversation_id,
        T0 + offset,
        [lead_tool_message({"FullName": LEAD_NAME, "Phone": LEAD_PHONE})],
    )


class FakeVoiceClient:
    """Serves canned conversations and records every call."""

    def __init__(self, conversations=(), fail_list=False, fail_detail_ids=(), detail_error_code="503"):
        self.conversations = list(conversations)
        self.fail_list = fail_list
        self.fail_detail_ids = set(fail_detail_ids)
        self.detail_error_code = detail_error_code
        self.list_calls = []
        self.list_filters = []
        self.detail_calls = []
        self.rate_limit_info = None

    def list_conversations(self, page_size=30, **kwargs):
        self.list_calls.append(page_size)
        self.list_filters.append(kwargs)
        if self.fail_list:
            return ApiResult.fail(ApiError(code="500", message="upstream unavailable"))
        summaries = [ConversationSummary.model_validate(c) for c in self.conversations[:page_size]]
        return ApiResult.ok(ConversationPage(conversations=summaries, has_more=False))

    def get_conversation(self, conversation_id):
        self.detail_calls.append(conversation_id)
        if conversation_id in self.fail_detail_ids:
            return ApiResult.fail(ApiError(code=self.detail_error_code, message="detail unavailable"))
        for item in self.conversations:
            if item["conversation_id"] == conversation_id:
                return ApiResult.ok(ConversationDetail.model_validate(item))
        return ApiResult.fail(ApiError(code="404", message="Conversation not found"))

    def close(self):
        pass
