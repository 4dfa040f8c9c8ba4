import httpx
import logging

from intakedesk.classification import (
    FALLBACK_QUESTION,
    NeedMoreInfo,
    OracleResult,
    parse_oracle_response,
)
from intakedesk.errors import OracleError
from intakedesk.prompts import SYSTEM_MESSAGE
from intakedesk.transcript import to_oracle_context

logger = logging.getLogger(__name__)

ANTHROPIC_BASE_URL = "https://api.anthropic.com"
ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MODEL = "claude-sonnet-4-20250514"


class OracleClient:
    """Client for the classification oracle (Anthropic Messages API).

    Exactly one HTTP request per ``evaluate`` call.  Transport failures and
    timeouts raise :class:`OracleError`; the caller decides whether to retry.
    Malformed model output never raises and becomes a clarification question.
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 1024,
        timeout: float = 30.0,
        base_url: str = ANTHROPIC_BASE_URL,
        system_prompt: str = SYSTEM_MESSAGE,
        client: httpx.AsyncClient | None = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.system_prompt = system_prompt
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                base_url=base_url.rstrip("/"),
                headers={
                    "Content-Type": "application/json",
                    "x-api-key": api_key,
                    "anthropic-version": ANTHROPIC_VERSION,
                },
                timeout=timeout,
            )

    async def close(self):
        await self._client.aclose()

    def build_request(self, messages: list[dict], team: str = "") -> dict:
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": self.system_prompt,
            "messages": [
                {"role": "user", "content": to_oracle_context(messages, team)},
            ],
        }

    async def evaluate(self, messages: list[dict], team: str = "") -> OracleResult:
        try:
            resp = await self._client.post("/v1/messages", json=self.build_request(messages, team))
            resp.raise_for_status()
            body = resp.json()
        except httpx.TimeoutException as e:
            logger.error("Oracle call timed out after %.0fs: %s", self.timeout, e)
            raise OracleError("Classification service timed out") from e
        except httpx.HTTPStatusError as e:
            logger.error("Oracle returned %s: %s", e.response.status_code, e.response.text)
            raise OracleError(f"Classification service returned {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Oracle call failed: %s", e)
            raise OracleError("Classification service unavailable") from e

        text = _first_text_block(body)
        if text is None:
            logger.warning("Oracle response had no text block, asking for clarification")
            return NeedMoreInfo(question=FALLBACK_QUESTION)
        return parse_oracle_response(text)


def _first_text_block(body) -> str | None:
    if not isinstance(body, dict):
        return None
    for block in body.get("content") or []:
        if isinstance(block, dict) and block.get("type") == "text":
            return block.get("text")
    return None
