"""Request/response conversion of the provider strategies."""

from datetime import datetime

import pytest

from chat_gateway.content import ContentNormalizer
from chat_gateway.errors import (
    ImageCountExceeded,
    InvalidContent,
    MissingRequiredParameter,
    ProviderAuthFailed,
    ProviderResponseMalformed,
)
from chat_gateway.image_processor import UploadedFile
from chat_gateway.providers.base import Capability, ChatRequest, ContentItem, Message
from chat_gateway.providers.deepseek import DeepSeekStrategy
from chat_gateway.providers.glm import GlmVisionStrategy
from chat_gateway.providers.iflow import IflowStrategy


def _request(model, *messages, **kwargs):
    return ChatRequest(model=model, messages=tuple(messages), **kwargs)


# DeepSeek


def test_deepseek_payload(make_client):
    client = make_client()
    request = _request(
        "deepseek-chat",
        Message("system", "Be brief."),
        Message("user", "Hi"),
        max_tokens=100,
        temperature=0.2,
        top_p=0.9,
        stream=False,
        stop=("END",),
        response_format="json_object",
        extensions={"frequency_penalty": 0.5},
    )
    DeepSeekStrategy(client).handle_chat(request)

    payload = client.payloads[0]
    assert payload["messages"] == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "Hi"},
    ]
    assert payload["response_format"] == {"type": "json_object"}
    assert payload["stop"] == ["END"]
    assert payload["frequency_penalty"] == 0.5
    assert payload["presence_penalty"] == 0.0
    assert payload["max_tokens"] == 100


def test_deepseek_drops_non_text_items(make_client, jpeg_data_uri):
    client = make_client()
    request = _request(
        "deepseek-chat",
        Message("user", (ContentItem.text_item("What is this?"), ContentItem.image(jpeg_data_uri))),
    )
    DeepSeekStrategy(client).handle_chat(request)

    assert client.payloads[0]["messages"] == [{"role": "user", "content": "What is this?"}]


def test_deepseek_text_response_format(make_client):
    client = make_client()
    DeepSeekStrategy(client).handle_chat(
        _request("deepseek-chat", Message("user", "Hi"), response_format="markdown")
    )
    assert client.payloads[0]["response_format"] == {"type": "text"}


def test_deepseek_response_mapping(make_client, make_completion):
    client = make_client(
        make_completion(
            content="Answer",
            reasoning="Thinking...",
            finish_reason="length",
            model="deepseek-reasoner",
            system_fingerprint="fp_1",
        )
    )
    response = DeepSeekStrategy(client).handle_chat(_request("deepseek-reasoner", Message("user", "Hi")))

    assert response.id == "cmpl-123"
    assert response.status == "length_exceeded"
    assert response.text == "Answer"
    assert response.messages[0].extensions == {"reasoning_content": "Thinking..."}
    assert response.extensions == {"system_fingerprint": "fp_1", "object": "chat.completion"}
    assert response.usage.total_tokens == 15
    assert response.created == datetime.fromtimestamp(1700000000)


@pytest.mark.parametrize(
    "finish_reason, status",
    [("stop", "completed"), ("content_filter", "filtered"), (None, "completed"), ("tool_calls", "completed")],
)
def test_deepseek_finish_reason_status(make_client, make_completion, finish_reason, status):
    client = make_client(make_completion(finish_reason=finish_reason))
    response = DeepSeekStrategy(client).handle_chat(_request("deepseek-chat", Message("user", "Hi")))
    assert response.status == status


def test_empty_choices_is_malformed(make_client, make_completion):
    client = make_client(make_completion(choices=[]))
    with pytest.raises(ProviderResponseMalformed):
        DeepSeekStrategy(client).handle_chat(_request("deepseek-chat", Message("user", "Hi")))


def test_client_failure_is_classified_and_chained(make_client):
    cause = RuntimeError("401 Unauthorized")
    client = make_client(error=cause)
    with pytest.raises(ProviderAuthFailed) as exc_info:
        DeepSeekStrategy(client).handle_chat(_request("deepseek-chat", Message("user", "Hi")))

    assert exc_info.value.__cause__ is cause
    assert exc_info.value.provider == "deepseek"


# iFlow


def test_iflow_forces_non_streaming(make_client):
    client = make_client()
    IflowStrategy(client).handle_chat(_request("GLM-4.6", Message("user", "Hi"), stream=True))
    assert client.payloads[0]["stream"] is False


def test_iflow_response(make_client, make_completion):
    client = make_client(make_completion(content="Done", reasoning="hmm", created=None))
    response = IflowStrategy(client).handle_chat(_request("TBStars2-200B-A13B", Message("user", "Hi")))

    assert response.status == "success"
    assert response.model == "TBStars2-200B-A13B"
    assert response.text == "Done"
    assert response.messages[0].extensions["reasoning_content"] == "hmm"
    assert isinstance(response.created, datetime)


def test_iflow_flattens_multimodal(make_client):
    client = make_client()
    message = Message(
        "user", (ContentItem.text_item("Read "), ContentItem.file("https://x.test/a.pdf"), ContentItem.text_item("this"))
    )
    IflowStrategy(client).handle_chat(_request("GLM-4.6", message))
    assert client.payloads[0]["messages"] == [{"role": "user", "content": "Read this"}]


# GLM


def test_glm_capabilities(make_client):
    strategy = GlmVisionStrategy(make_client())
    assert strategy.capabilities() == {
        Capability.TEXT_CHAT,
        Capability.VISION_VIA_FILES,
        Capability.VISION_VIA_BASE64,
    }
    assert strategy.served_models() == {"glm-4.1v-thinking-flash"}


def test_glm_text_payload(make_client):
    client = make_client()
    request = _request(
        "glm-4.1v-thinking-flash",
        Message("system", "   "),
        Message("user", "Hi"),
        stream=False,
        extensions={"request_id": "req-1", "user_id": "u-9"},
    )
    GlmVisionStrategy(client).handle_chat(request)

    payload = client.payloads[0]
    assert payload["messages"] == [{"role": "user", "content": "Hi"}]
    assert payload["thinking"] == {"type": "enabled"}
    assert payload["do_sample"] is True
    assert payload["request_id"] == "req-1"
    assert payload["user_id"] == "u-9"


def test_glm_thinking_only_for_thinking_models(make_client):
    client = make_client()
    GlmVisionStrategy(client, models=["glm-4v-plus-0111"]).handle_chat(
        _request("glm-4v-plus-0111", Message("user", "Hi"))
    )
    assert client.payloads[0]["thinking"] is None


def test_glm_base64_over_limit_fails_before_call(make_client, jpeg_data_uri):
    client = make_client()
    strategy = GlmVisionStrategy(client)
    image_map = {"image_1.jpg": jpeg_data_uri, "image_2.jpg": jpeg_data_uri + "AAAA"}

    with pytest.raises(ImageCountExceeded) as exc_info:
        strategy.handle_chat_with_base64_images(
            _request("glm-4.1v-thinking-flash", Message("user", "Compare")), image_map
        )

    assert exc_info.value.details == {"model": "glm-4.1v-thinking-flash", "limit": 1, "count": 2}
    assert client.calls == 0


def test_glm_images_up_to_limit_succeed(make_client, jpeg_data_uri, png_rgba_bytes, data_uri):
    client = make_client()
    strategy = GlmVisionStrategy(client, models=["glm-4v-plus-0111"])
    png_uri = data_uri(png_rgba_bytes, "png")
    image_map = {f"image_{i}.jpg": uri for i, uri in enumerate([jpeg_data_uri, png_uri] * 2 + [jpeg_data_uri], 1)}

    strategy.handle_chat_with_base64_images(
        _request("glm-4v-plus-0111", Message("user", "Compare")), image_map
    )

    content = client.payloads[0]["messages"][0]["content"]
    assert content[0] == {"type": "text", "text": "Compare"}
    assert [item["type"] for item in content[1:]] == ["image_url"] * 5


def test_glm_unknown_model_limit_defaults_to_one(make_client, jpeg_data_uri):
    strategy = GlmVisionStrategy(make_client(), models=["glm-new"])
    with pytest.raises(ImageCountExceeded):
        strategy.check_image_count("glm-new", 2)
    strategy.check_image_count("glm-new", 1)


def test_glm_base64_map_skips_entries_already_in_request(make_client, jpeg_data_uri):
    client = make_client()
    message = Message("user", (ContentItem.text_item("Look"), ContentItem.image(jpeg_data_uri)))

    GlmVisionStrategy(client).handle_chat_with_base64_images(
        _request("glm-4.1v-thinking-flash", message), {"image_1.jpg": jpeg_data_uri}
    )

    content = client.payloads[0]["messages"][0]["content"]
    assert content == [
        {"type": "text", "text": "Look"},
        {"type": "image_url", "image_url": {"url": jpeg_data_uri}},
    ]


def test_glm_empty_base64_map(make_client):
    with pytest.raises(MissingRequiredParameter):
        GlmVisionStrategy(make_client()).handle_chat_with_base64_images(
            _request("glm-4.1v-thinking-flash", Message("user", "Hi")), {}
        )


def test_glm_all_images_invalid(make_client, jpeg_bytes, data_uri):
    client = make_client()
    corrupt = data_uri(jpeg_bytes, "png")
    with pytest.raises(MissingRequiredParameter):
        GlmVisionStrategy(client).handle_chat_with_base64_images(
            _request("glm-4.1v-thinking-flash", Message("user", "Hi")), {"image_1.png": corrupt}
        )
    assert client.calls == 0


def test_glm_invalid_image_skipped_when_another_survives(make_client, jpeg_data_uri, jpeg_bytes, data_uri):
    client = make_client()
    corrupt = data_uri(jpeg_bytes, "png")
    message = Message(
        "user",
        (ContentItem.text_item("Look"), ContentItem.image(corrupt), ContentItem.image(jpeg_data_uri)),
    )
    GlmVisionStrategy(client, models=["glm-4v-plus-0111"]).handle_chat(_request("glm-4v-plus-0111", message))

    content = client.payloads[0]["messages"][0]["content"]
    assert [item["type"] for item in content] == ["text", "image_url"]


def test_glm_oversized_bomb_skipped_when_another_survives(make_client, jpeg_data_uri, huge_png, data_uri):
    client = make_client()
    message = Message(
        "user",
        (
            ContentItem.text_item("Look"),
            ContentItem.image(data_uri(huge_png(), "png")),
            ContentItem.image(jpeg_data_uri),
        ),
    )
    strategy = GlmVisionStrategy(
        client, models=["glm-4v-plus-0111"], normalizer=ContentNormalizer(max_image_bytes=40 * 1024)
    )

    strategy.handle_chat(_request("glm-4v-plus-0111", message))

    content = client.payloads[0]["messages"][0]["content"]
    assert content[1] == {"type": "image_url", "image_url": {"url": jpeg_data_uri}}
    assert len(content) == 2


def test_glm_file_urls(make_client):
    client = make_client()
    message = Message("user", (ContentItem.text_item("Summarize"), ContentItem.file("https://x.test/a.pdf")))
    file_map = {"file_1": "https://x.test/a.pdf", "file_2": "http://x.test/b.docx"}

    GlmVisionStrategy(client).handle_chat_with_file_urls(_request("glm-4.1v-thinking-flash", message), file_map)

    content = client.payloads[0]["messages"][0]["content"]
    assert content == [
        {"type": "text", "text": "Summarize"},
        {"type": "file_url", "file_url": {"url": "https://x.test/a.pdf"}},
        {"type": "file_url", "file_url": {"url": "http://x.test/b.docx"}},
    ]


def test_glm_file_urls_reject_non_http(make_client):
    client = make_client()
    with pytest.raises(InvalidContent):
        GlmVisionStrategy(client).handle_chat_with_file_urls(
            _request("glm-4.1v-thinking-flash", Message("user", "Hi")), {"file_1": "ftp://x.test/a.pdf"}
        )
    with pytest.raises(MissingRequiredParameter):
        GlmVisionStrategy(client).handle_chat_with_file_urls(
            _request("glm-4.1v-thinking-flash", Message("user", "Hi")), {}
        )
    assert client.calls == 0


def test_glm_uploaded_files(make_client, noise_png):
    client = make_client()
    upload = UploadedFile("photo.png", noise_png(300, 300), "image/png")

    GlmVisionStrategy(client).handle_chat_with_files(
        _request("glm-4.1v-thinking-flash", Message("system", "Be precise."), Message("user", "Describe")),
        [upload],
    )

    messages = client.payloads[0]["messages"]
    assert messages[0] == {"role": "system", "content": "Be precise."}
    assert messages[1]["content"][0] == {"type": "text", "text": "Describe"}
    assert messages[1]["content"][1]["image_url"]["url"].startswith("data:image/png;base64,")


def test_glm_uploaded_files_over_limit(make_client, jpeg_bytes):
    client = make_client()
    uploads = [UploadedFile(f"{i}.jpg", jpeg_bytes, "image/jpeg") for i in range(2)]
    with pytest.raises(ImageCountExceeded):
        GlmVisionStrategy(client).handle_chat_with_files(
            _request("glm-4.1v-thinking-flash", Message("user", "Hi")), uploads
        )
    assert client.calls == 0


def test_glm_uploaded_files_none_convertible(make_client):
    client = make_client()
    with pytest.raises(MissingRequiredParameter):
        GlmVisionStrategy(client).handle_chat_with_files(
            _request("glm-4.1v-thinking-flash", Message("user", "Hi")),
            [UploadedFile("notes.txt", b"hello", "text/plain")],
        )
    assert client.calls == 0


def test_glm_response(make_client, make_completion):
    client = make_client(make_completion(content="A cat", reasoning="whiskers", model="glm-4.1v-thinking-flash"))
    response = GlmVisionStrategy(client).handle_chat(
        _request("glm-4.1v-thinking-flash", Message("user", "Hi"))
    )
    assert response.text == "A cat"
    assert response.messages[0].role == "assistant"
    assert response.messages[0].extensions == {"reasoning_content": "whiskers"}
    assert response.usage.prompt_tokens == 10
