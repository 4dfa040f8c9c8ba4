import json
import pytest
import httpx
import respx

from intakedesk.classification import FALLBACK_QUESTION, Create, NeedMoreInfo, Ready
from intakedesk.errors import OracleError
from intakedesk.oracle import OracleClient

BASE_URL = "https://llm.example.com"
MESSAGES_URL = f"{BASE_URL}/v1/messages"


def _reply(text: str) -> httpx.Response:
    return httpx.Response(200, json={"content": [{"type": "text", "text": text}]})


@pytest.fixture
def oracle():
    return OracleClient(api_key="test-key", base_url=BASE_URL, timeout=5.0)


TRANSCRIPT = [
    {"role": "user", "content": "The HubSpot sync is broken"},
    {"role": "assistant", "content": "Which team?"},
    {"role": "user", "content": "Sales"},
]


class TestRequest:
    @respx.mock
    @pytest.mark.asyncio
    async def test_sends_full_transcript_once(self, oracle):
        route = respx.post(MESSAGES_URL).mock(
            return_value=_reply('{"status": "need_more_info", "question": "Since when?"}')
        )
        await oracle.evaluate(TRANSCRIPT, team="Sales")

        assert route.call_count == 1
        request = route.calls[0].request
        assert request.headers["x-api-key"] == "test-key"
        assert request.headers["anthropic-version"]
        body = json.loads(request.content)
        assert body["model"] == oracle.model
        prompt = body["messages"][0]["content"]
        assert prompt.startswith("User's team: Sales")
        assert "USER: The HubSpot sync is broken" in prompt
        assert "ASSISTANT: Which team?" in prompt
        assert "USER: Sales" in prompt

    def test_no_team_header_without_team(self, oracle):
        body = oracle.build_request(TRANSCRIPT)
        assert body["messages"][0]["content"].startswith("Conversation so far:")


class TestResults:
    @respx.mock
    @pytest.mark.asyncio
    async def test_need_more_info(self, oracle):
        respx.post(MESSAGES_URL).mock(
            return_value=_reply('{"status": "need_more_info", "question": "Since when?"}')
        )
        assert await oracle.evaluate(TRANSCRIPT) == NeedMoreInfo(question="Since when?")

    @respx.mock
    @pytest.mark.asyncio
    async def test_ready(self, oracle, classification_dict):
        respx.post(MESSAGES_URL).mock(
            return_value=_reply(json.dumps({"status": "ready", "classification": classification_dict}))
        )
        result = await oracle.evaluate(TRANSCRIPT)
        assert isinstance(result, Ready)
        assert result.classification.priority == "urgent"

    @respx.mock
    @pytest.mark.asyncio
    async def test_create(self, oracle):
        respx.post(MESSAGES_URL).mock(return_value=_reply('{"status": "create"}'))
        assert isinstance(await oracle.evaluate(TRANSCRIPT), Create)

    @respx.mock
    @pytest.mark.asyncio
    async def test_prose_answer_falls_back(self, oracle):
        respx.post(MESSAGES_URL).mock(return_value=_reply("I think this is a bug, ready to create!"))
        result = await oracle.evaluate(TRANSCRIPT)
        assert result == NeedMoreInfo(question=FALLBACK_QUESTION)

    @respx.mock
    @pytest.mark.asyncio
    async def test_missing_text_block_falls_back(self, oracle):
        respx.post(MESSAGES_URL).mock(
            return_value=httpx.Response(200, json={"content": [{"type": "tool_use", "id": "x"}]})
        )
        result = await oracle.evaluate(TRANSCRIPT)
        assert isinstance(result, NeedMoreInfo)


class TestFailures:
    @respx.mock
    @pytest.mark.asyncio
    async def test_server_error_raises(self, oracle):
        respx.post(MESSAGES_URL).mock(return_value=httpx.Response(529, text="overloaded"))
        with pytest.raises(OracleError):
            await oracle.evaluate(TRANSCRIPT)

    @respx.mock
    @pytest.mark.asyncio
    async def test_timeout_raises(self, oracle):
        respx.post(MESSAGES_URL).mock(side_effect=httpx.ReadTimeout("timed out"))
        with pytest.raises(OracleError):
            await oracle.evaluate(TRANSCRIPT)

    @respx.mock
    @pytest.mark.asyncio
    async def test_connection_error_raises_without_retry(self, oracle):
        route = respx.post(MESSAGES_URL).mock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(OracleError):
            await oracle.evaluate(TRANSCRIPT)
        assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_close(self, oracle):
        await oracle.close()
        assert oracle._client.is_closed
