# observability/langfuse_client.py
from langfuse import get_client
from dotenv import load_dotenv

load_dotenv(".venv/.env")

_langfuse = None


def get_langfuse():
    # 1 global instance for whole system
    global _langfuse
    if _langfuse is None:
        _langfuse = get_client()
    return _langfuse
