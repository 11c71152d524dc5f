import time
from typing import Optional, Dict, Any

import httpx

from tails.tails_datatypes import TailsRuntimeError, IO_ERROR


def http_request(method: str, url: str, *, config: Optional[Dict] = None, data: Any = None,
                 transport: Optional[httpx.BaseTransport] = None) -> Any:
    """
    Core HTTP helper.

    config keys: timeout (seconds), retries, backoff (seconds, doubled per
    retry), headers (object), params (object). Objects and lists sent as
    `data` are encoded as JSON; strings go out as text/plain.

    Returns the deserialized body on 2xx; raises an io error otherwise.
    `transport` lets callers (and tests) substitute the network layer.
    """
    cfg = dict(config or {})
    timeout = float(cfg.pop('timeout', 5.0))
    retries = int(cfg.pop('retries', 2))
    backoff = float(cfg.pop('backoff', 0.2))
    headers = {str(k): str(v) for k, v in dict(cfg.pop('headers', None) or {}).items()}
    params = {str(k): v for k, v in dict(cfg.pop('params', None) or {}).items()}

    from tails.tails_serialize import deserialize, serialize
    body = None
    if data is not None:
        if isinstance(data, (dict, list)):
            body = serialize(data, fmt='json').encode('utf-8')
            headers.setdefault("Content-Type", "application/json")
        else:
            body = str(data).encode('utf-8')
            headers.setdefault("Content-Type", "text/plain; charset=utf-8")

    with httpx.Client(timeout=timeout, follow_redirects=True, transport=transport) as client:
        last_exc = None
        for attempt in range(retries + 1):
            try:
                resp = client.request(
                    method.upper(),
                    url,
                    headers=headers,
                    params=params,
                    content=body,
                )
            except httpx.HTTPError as e:
                last_exc = e
                if attempt < retries:
                    time.sleep(backoff * (2 ** attempt))
                    continue
                raise TailsRuntimeError(f"HTTP {method.upper()} {url} failed: {last_exc}", IO_ERROR)
            ct = resp.headers.get("Content-Type")
            if 200 <= resp.status_code < 300:
                return deserialize(resp.content, content_type=ct)
            # Non-2xx: no retry for client errors
            preview = (resp.text or "")[:200]
            if resp.status_code >= 500 and attempt < retries:
                time.sleep(backoff * (2 ** attempt))
                continue
            raise TailsRuntimeError(f"HTTP {resp.status_code} for {url}: {preview}", IO_ERROR)

