"""
util/http.py

Tiny HTTP helpers for JSON and text requests with simple retries.
- Timeout can be configured via HTTP_TIMEOUT env (default 8s)
- Raises for HTTP status errors and bubbles network errors after retries
"""

import os
import time

import requests


def _env_timeout():
    try:
        return float(os.getenv("HTTP_TIMEOUT", "8"))
    except ValueError:
        return 8.0


def _send(method, url, params=None, headers=None, json_body=None, timeout=None, retries=1):
    if timeout is None:
        timeout = _env_timeout()

    for attempt in range(retries + 1):
        try:
            resp = requests.request(method, url, params=params, headers=headers, json=json_body, timeout=timeout)
            resp.raise_for_status()
            return resp
        except requests.RequestException:  # bubble after retries
            if attempt < retries:
                time.sleep(0.35 * (attempt + 1))
                continue
            raise
    raise RuntimeError("_send: unreachable")


def _request_json(method, url, **kwargs):
    resp = _send(method, url, **kwargs)
    if not resp.content:
        return {}
    return resp.json()


def get_json(url, params=None, headers=None, timeout=None, retries=1):
    """HTTP GET JSON with simple retry."""
    return _request_json("GET", url, params=params, headers=headers, timeout=timeout, retries=retries)


def get_text(url, params=None, headers=None, timeout=None, retries=1):
    """HTTP GET returning the decoded body (feeds, XML)."""
    return _send("GET", url, params=params, headers=headers, timeout=timeout, retries=retries).text


def post_json(url, body, params=None, headers=None, timeout=None, retries=0):
    """HTTP POST JSON. No retry by default: POSTs here create resources."""
    return _request_json("POST", url, params=params, headers=headers, json_body=body, timeout=timeout, retries=retries)
