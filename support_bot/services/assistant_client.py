from dataclasses import dataclass, field

import requests

from support_bot.config import HTTP_TIMEOUT_SECONDS, OPENAI_API_KEY, OPENAI_BASE_URL
from support_bot.errors import RunTransportError
from support_bot.logging_config import get_logger
from support_bot.services.tools import ToolCallRequest, ToolCallResult

logger = get_logger(__name__)


@dataclass(frozen=True)
class RunSnapshot:
    id: str
    status: str
    pending_tool_calls: list[ToolCallRequest] = field(default_factory=list)
    last_error: str | None = None

    @classmethod
    def from_api(cls, data: dict) -> "RunSnapshot":
        if not isinstance(data, dict) or not data.get("id") or not data.get("status"):
            raise RunTransportError(f"Unexpected run payload: {data}")

        try:
            required_action = data.get("required_action") or {}
            tool_calls = (required_action.get("submit_tool_outputs") or {}).get("tool_calls") or []
            last_error = data.get("last_error") or {}
            return cls(
                id=data["id"],
                status=data["status"],
                pending_tool_calls=[ToolCallRequest.from_api(c) for c in tool_calls],
                last_error=last_error.get("message"),
            )
        except (AttributeError, TypeError) as e:
            raise RunTransportError(f"Malformed run {data['id']}: {e}") from e


class AssistantClient:
    """Assistants v2 REST API: threads, messages and runs."""

    def __init__(self, api_key: str | None = OPENAI_API_KEY, base_url: str = OPENAI_BASE_URL,
                 timeout_s: float = HTTP_TIMEOUT_SECONDS, session: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.http = session or requests.Session()
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "OpenAI-Beta": "assistants=v2",
        }

    def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.base_url}{path}"
        try:
            resp = self.http.request(method, url, headers=self.headers, timeout=self.timeout_s, **kwargs)
            resp.raise_for_status()
            return resp.json()
        except requests.HTTPError as e:
            raise RunTransportError(
                f"Assistant API error {e.response.status_code} on {method} {path}: {e.response.text}"
            ) from e
        except requests.RequestException as e:
            raise RunTransportError(f"Network error calling assistant API: {e}") from e
        except ValueError as e:
            raise RunTransportError(f"Assistant API response was not valid JSON ({method} {path})") from e

    def create_thread(self) -> str:
        thread_id = self._request("POST", "/threads", json={}).get("id")
        if not thread_id:
            raise RunTransportError("Assistant API response missing thread id")
        return thread_id

    def add_message(self, thread_id: str, content: str) -> None:
        self._request("POST", f"/threads/{thread_id}/messages", json={"role": "user", "content": content})

    def create_run(self, thread_id: str, assistant_id: str) -> RunSnapshot:
        data = self._request("POST", f"/threads/{thread_id}/runs", json={"assistant_id": assistant_id})
        return RunSnapshot.from_api(data)

    def retrieve_run(self, thread_id: str, run_id: str) -> RunSnapshot:
        return RunSnapshot.from_api(self._request("GET", f"/threads/{thread_id}/runs/{run_id}"))

    def submit_tool_outputs(self, thread_id: str, run_id: str, results: list[ToolCallResult]) -> RunSnapshot:
        data = self._request(
            "POST",
            f"/threads/{thread_id}/runs/{run_id}/submit_tool_outputs",
            json={"tool_outputs": [r.as_submission() for r in results]},
        )
        return RunSnapshot.from_api(data)

    def latest_assistant_text(self, thread_id: str) -> str | None:
        data = self._request("GET", f"/threads/{thread_id}/messages", params={"order": "desc", "limit": 10})
        for message in data.get("data", []):
            if message.get("role") != "assistant":
                continue
            for part in message.get("content", []):
                if part.get("type") == "text":
                    value = (part.get("text") or {}).get("value")
                    if value:
                        return value
            return None
        return None

    def create_assistant(self, name: str, instructions: str, model: str, tools: list[dict]) -> dict:
        data = self._request(
            "POST",
            "/assistants",
            json={"name": name, "instructions": instructions, "model": model, "tools": tools},
        )
        if not data.get("id"):
            raise RunTransportError(f"Assistant API response missing assistant id: {data}")
        logger.info(f"Assistant {data['id']} created")
        return data
