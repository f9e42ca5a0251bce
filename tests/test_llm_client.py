# SPDX-License-Identifier: AGPL-3.0-only

import pytest
import requests
from unittest.mock import Mock, patch

from common.llm_client import LLMClient, LLMClientError, LLMTimeoutError
from docextract.config import ExtractionConfig


def _response(payload):
    resp = Mock()
    resp.json.return_value = payload
    resp.raise_for_status.return_value = None
    return resp


@pytest.mark.unit
class TestLLMClient:

    def test_from_config(self):
        config = ExtractionConfig(_env_file=None, llm_provider="anthropic", anthropic_api_key="sk-ant",
                                  llm_timeout=12)
        client = LLMClient.from_config(config.get_llm_config())

        assert client.provider == "anthropic"
        assert client.model == "claude-3-haiku-20240307"
        assert client.api_key == "sk-ant"
        assert client.timeout == 12
        assert client.is_configured()

    @pytest.mark.parametrize("provider,api_key,configured", [
        ("openai", None, False),
        ("openai", "sk-test", True),
        ("ollama", None, True),
        ("none", None, False),
    ])
    def test_is_configured(self, provider, api_key, configured):
        assert LLMClient(provider=provider, api_key=api_key).is_configured() is configured

    @patch("common.llm_client.requests.post")
    def test_openai_json_mode(self, mock_post):
        mock_post.return_value = _response({
            "choices": [{"message": {"content": '{"licenseNumber": "A1234567"}'}}],
            "usage": {"total_tokens": 321},
        })
        client = LLMClient(provider="openai", api_key="sk-test", timeout=5)

        result = client.call("Extract", system_prompt="You extract fields.", json_mode=True)

        assert result == {"text": '{"licenseNumber": "A1234567"}', "tokens": 321, "cost": 0.0}
        payload = mock_post.call_args.kwargs["json"]
        assert payload["response_format"] == {"type": "json_object"}
        assert payload["messages"][0] == {"role": "system", "content": "You extract fields."}
        assert mock_post.call_args.kwargs["timeout"] == 5

    @patch("common.llm_client.requests.post")
    def test_anthropic(self, mock_post):
        mock_post.return_value = _response({
            "content": [{"text": "{}"}],
            "usage": {"input_tokens": 100, "output_tokens": 20},
        })
        result = LLMClient(provider="anthropic", api_key="sk-ant").call("Extract", system_prompt="sys")

        assert result["tokens"] == 120
        assert mock_post.call_args.kwargs["json"]["system"] == "sys"

    @patch("common.llm_client.requests.post")
    def test_ollama(self, mock_post):
        mock_post.return_value = _response({"response": "{}", "prompt_eval_count": 50, "eval_count": 5})
        client = LLMClient(provider="ollama", base_url="http://ollama:11434/")

        result = client.call("Extract", json_mode=True)

        assert result["tokens"] == 55
        assert mock_post.call_args.args[0] == "http://ollama:11434/api/generate"
        assert mock_post.call_args.kwargs["json"]["format"] == "json"

    @patch("common.llm_client.requests.post")
    def test_timeout(self, mock_post):
        mock_post.side_effect = requests.exceptions.Timeout("read timed out")
        with pytest.raises(LLMTimeoutError):
            LLMClient(provider="openai", api_key="sk-test").call("Extract")

    @patch("common.llm_client.time.sleep")
    @patch("common.llm_client.requests.post")
    def test_retries_then_succeeds(self, mock_post, mock_sleep):
        mock_post.side_effect = [
            requests.exceptions.ConnectionError("refused"),
            _response({"response": "{}"}),
        ]
        result = LLMClient(provider="ollama", max_retries=2).call("Extract")

        assert result["text"] == "{}"
        assert mock_post.call_count == 2
        mock_sleep.assert_called_once_with(1)

    @patch("common.llm_client.requests.post")
    def test_malformed_response(self, mock_post):
        mock_post.return_value = _response({"choices": []})
        with pytest.raises(LLMClientError, match="Unexpected openai response"):
            LLMClient(provider="openai", api_key="sk-test").call("Extract")

    def test_missing_key(self):
        with pytest.raises(LLMClientError, match="API key not set"):
            LLMClient(provider="openai").call("Extract")

    def test_unknown_provider(self):
        with pytest.raises(LLMClientError, match="Unknown provider"):
            LLMClient(provider="none").call("Extract")
