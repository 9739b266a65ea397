import logging

import gradio as gr
import httpx

from config import get_app_config
from presentation import apply_chunk, iter_sse, new_message, render_message, show_processing

logger = logging.getLogger("chat_ui")

INTRO = "## 🤖 SQL Assistant\nAsk me anything about your database!"


def stream_reply(api_url, ui_messages, assistant, timeout=60.0):
    """Post the conversation and fold every streamed part into ``assistant``."""
    with httpx.stream("POST", api_url, json={"messages": ui_messages}, timeout=timeout) as response:
        response.raise_for_status()
        for chunk in iter_sse(response.iter_lines()):
            apply_chunk(assistant, chunk)
            yield assistant


def chat_history(ui_messages):
    history = []
    for message in ui_messages:
        content = render_message(message)
        if content:
            history.append({"role": message["role"], "content": content})
    return history


def run_chat_stream(message, ui_messages):
    if not message or not message.strip():
        yield chat_history(ui_messages), "", ui_messages, message
        return
    ui_messages = ui_messages + [new_message("user", message)]
    assistant = new_message("assistant")
    request_messages = list(ui_messages)
    ui_messages.append(assistant)
    yield chat_history(ui_messages), "_Thinking..._", ui_messages, ""
    cfg = get_app_config()
    try:
        for _ in stream_reply(cfg.api_url, request_messages, assistant, timeout=cfg.request_timeout * 2):
            status = "_Thinking..._" if show_processing(ui_messages, streaming=True) else ""
            yield chat_history(ui_messages), status, ui_messages, ""
    except httpx.HTTPError as e:
        logger.error("Chat request failed: %s", e)
        assistant["error"] = str(e)
    yield chat_history(ui_messages), "", ui_messages, ""


def build_demo():
    with gr.Blocks(title="SQL Assistant") as demo:
        gr.Markdown(INTRO)
        chatbot = gr.Chatbot(label="Chat")
        status = gr.Markdown("")
        state = gr.State([])
        message = gr.Textbox(label="Message", placeholder="Ask about your database...")
        send = gr.Button("Send")
        outputs = [chatbot, status, state, message]
        send.click(run_chat_stream, inputs=[message, state], outputs=outputs)
        message.submit(run_chat_stream, inputs=[message, state], outputs=outputs)
    return demo


if __name__ == "__main__":
    logging.basicConfig(level=get_app_config().log_level)
    build_demo().launch()
