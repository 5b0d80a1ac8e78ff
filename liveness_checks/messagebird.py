from __future__ import annotations

import json
from dataclasses import dataclass

import httpx


MESSAGEBIRD_MESSAGES_URL = "https://rest.messagebird.com/messages"
MESSAGEBIRD_AUTH_USER = "AccessKey"


@dataclass(frozen=True)
class MessageBirdConfig:
    token: str
    sender: str
    recipients: str


async def send_sms(client: httpx.AsyncClient, config: MessageBirdConfig, body: str) -> tuple[bool, dict]:
    payload = {
        "recipients": config.recipients,
        "originator": config.sender,
        "body": body,
    }
    headers = {
        "Accept": "application/json",
        "Content-Type": "application/x-www-form-urlencoded",
    }
    try:
        resp = await client.post(
            MESSAGEBIRD_MESSAGES_URL,
            data=payload,
            headers=headers,
            auth=(MESSAGEBIRD_AUTH_USER, config.token),
            timeout=15.0,
        )
    except httpx.HTTPError as e:
        msg = f"{type(e).__name__}: {e}"
        if config.token:
            msg = msg.replace(config.token, "<redacted>")
        return False, {"ok": False, "error": msg}

    ok = resp.is_success
    try:
        data = resp.json()
    except ValueError:
        data = {"text": (resp.text or "")[:300]}
    if not isinstance(data, dict):
        data = {"data": data}
    return ok, {**data, "ok": ok, "status_code": resp.status_code}


def redact_messagebird_response(data: dict) -> str:
    safe = {"ok": data.get("ok"), "status_code": data.get("status_code")}
    if data.get("id"):
        safe["id"] = data.get("id")
    if data.get("errors"):
        safe["errors"] = data.get("errors")
    if data.get("error"):
        safe["error"] = data.get("error")
    return json.dumps(safe, ensure_ascii=False)
