"""Identifier helpers."""

import secrets
from uuid import uuid4


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


def new_widget_token() -> str:
    return f"wc_{secrets.token_hex(24)}"
