import httpx
import pytest
from unittest.mock import Mock, patch
from ollama import ResponseError

from codementor.models.providers.base import ChatRequest, ModelError, ModelRetryable, ModelTimeout
from codementor.models.providers.ollama import OllamaProvider


@pytest.fixture(autouse=True)
def no_backoff():
    with patch.object(OllamaProvider.chat.retry, "sleep", Mock()):
        yield


class TestOllamaProvider:
    """Test suite for OllamaProvider functionality"""

    @pytest.fixture
    def provider(self):
        """Create a test OllamaProvider instance"""
        with patch('codementor.models.providers.ollama.Client'):
            return OllamaProvider(host="http://localhost:11434", request_timeout_s=30)

    @pytest.fixture
    def mock_client(self, provider):
        """Get the mocked client from the provider"""
        return provider.client

    def test_initialization(self, provider):
        """
        Test: OllamaProvider initialization with custom settings
        How: Create provider with custom host and timeout
        Ensures: Provider can be initialized with different configurations
        """
        assert provider.host == "http://localhost:11434"
        assert provider.keep_alive == "5m"
        assert provider.request_timeout_s == 30

    def test_chat_maps_options(self, provider, mock_client):
        """
        Test: Hint-style request through the ollama client
        How: Send sampling params with max_tokens and a stop sequence
        Ensures: max_tokens becomes num_predict and the other options pass through untouched
        """
        mock_client.chat.return_value = {
            "model": "codellama:7b",
            "message": {"role": "assistant", "content": '{"problem": "p"}'},
            "eval_count": 12,
        }
        request = ChatRequest(
            model="codellama:7b",
            messages=[{"role": "user", "content": "hint please"}],
            params={"temperature": 0.2, "max_tokens": 300, "stop": ["\n\n\n\n"]},
        )

        response = provider.chat(request)

        assert response.content == '{"problem": "p"}'
        assert response.meta["eval_count"] == 12
        kwargs = mock_client.chat.call_args.kwargs
        assert kwargs["options"] == {"temperature": 0.2, "num_predict": 300, "stop": ["\n\n\n\n"]}
        assert kwargs["keep_alive"] == "5m"
        assert kwargs["format"] is None

    def test_object_response(self, provider, mock_client):
        message = Mock(content="hello")
        mock_client.chat.return_value = Mock(message=message, model="m")

        assert provider.chat(ChatRequest(model="m", messages=[])).content == "hello"

    def test_custom_timeout_uses_new_client(self, provider):
        with patch('codementor.models.providers.ollama.Client') as client_cls:
            client_cls.return_value.chat.return_value = {"message": {"content": "x"}}
            provider.chat(ChatRequest(model="m", messages=[], params={"timeout": 5}))

        client_cls.assert_called_once_with(host="http://localhost:11434", timeout=5)

    def test_read_timeout(self, provider, mock_client):
        mock_client.chat.side_effect = httpx.ReadTimeout("slow")
        with pytest.raises(ModelTimeout):
            provider.chat(ChatRequest(model="m", messages=[]))

    def test_retryable_response_error(self, provider, mock_client):
        mock_client.chat.side_effect = ResponseError("busy", 503)
        with pytest.raises(ModelRetryable):
            provider.chat(ChatRequest(model="m", messages=[]))
        assert mock_client.chat.call_count == 3

    def test_fatal_response_error(self, provider, mock_client):
        mock_client.chat.side_effect = ResponseError("model not found", 404)
        with pytest.raises(ModelError):
            provider.chat(ChatRequest(model="m", messages=[]))
        assert mock_client.chat.call_count == 1

    def test_health_check(self, provider, mock_client):
        assert provider.health_check()
        mock_client.list.side_effect = ConnectionError("down")
        assert not provider.health_check()
