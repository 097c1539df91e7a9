# Overview: Shared request helpers for the ledger blueprints.

from flask import request


def request_actor(payload: dict | None = None) -> str | None:
    """
    Caller identity for audit stamping.

    Authentication lives in the surrounding application; it forwards the
    identity in X-Actor (or an "actor" field in the body).
    """
    body_actor = payload.pop("actor", None) if payload else None
    header = request.headers.get("X-Actor")
    if header and header.strip():
        return header.strip()
    if isinstance(body_actor, str) and body_actor.strip():
        return body_actor.strip()
    return None
