import json
import time
from onlyone.settings import settings

# Redaction targets: OTP codes, tokens, credentials and contact details
SENSITIVE_KEYS = {
    "code", "token", "access_token", "refresh_token", "password",
    "contact", "target", "email", "phone", "digits",
}


def _mask(value):
    if isinstance(value, str):
        return f"[REDACTED:{len(value)}chars]" if value else value
    if isinstance(value, dict):
        return {k: _mask(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        # OTP digit lists: mask each position
        return [_mask(v) for v in value]
    return value


def _clean(fields: dict) -> dict:
    clean_fields = {}
    for k, v in fields.items():
        if k in SENSITIVE_KEYS:
            clean_fields[k] = _mask(v)
        elif isinstance(v, dict):
            clean_fields[k] = {sk: (_mask(sv) if sk in SENSITIVE_KEYS else sv) for sk, sv in v.items()}
        else:
            clean_fields[k] = v
    return clean_fields


def log(event: str, **fields):
    payload = {"ts": int(time.time()), "event": event}

    if settings.ENABLE_PII_REDACTION:
        payload.update(_clean(fields))
    else:
        payload.update(fields)

    print(json.dumps(payload, ensure_ascii=False, default=str))
