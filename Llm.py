from langchain_openai import ChatOpenAI
from fastapi import Depends
from functools import lru_cache
import httpx

from config import AppConfiguration, get_app_config


@lru_cache(maxsize=None)
def get_http_clients(verify_ssl: bool):
    """One shared httpx client pair per SSL setting, reused by every model client."""
    return httpx.Client(verify=verify_ssl), httpx.AsyncClient(verify=verify_ssl)


def get_llm_client(app_config: AppConfiguration) -> ChatOpenAI:
    """Create a ChatOpenAI client for the configured model.

    The API key falls back to the OPENAI_API_KEY environment variable when it
    is not set in the configuration. SSL verification can be turned off for
    gateways with self-signed certificates (VERIFY_SSL=false).
    """
    http_client, http_async_client = get_http_clients(app_config.verify_ssl)
    kwargs = {
        "model": app_config.model_name,
        "timeout": app_config.request_timeout,
        "streaming": True,
        "http_client": http_client,
        "http_async_client": http_async_client,
    }
    if app_config.openai_api_key:
        kwargs["api_key"] = app_config.openai_api_key
    if app_config.openai_base_url:
        kwargs["base_url"] = app_config.openai_base_url
    return ChatOpenAI(**kwargs)


def get_chat_model(app_config: AppConfiguration = Depends(get_app_config)) -> ChatOpenAI:
    return get_llm_client(app_config)
