"""Parsing of the base64 kubeconfig LKE hands out."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Any

import yaml

from lke_driver.errors import ValidationError


@dataclass(frozen=True, slots=True)
class KubeAccess:
    """Connection details of the kubeconfig's current context.

    Certificate and key fields are base64 strings, as the host expects them.
    """

    endpoint: str
    username: str = ""
    password: str = ""
    ca_data: str = ""
    cert_data: str = ""
    key_data: str = ""


def decode_kubeconfig(kubeconfig: str) -> dict[str, Any]:
    """Decode a base64 kubeconfig blob into its YAML document."""
    try:
        raw = base64.b64decode(kubeconfig, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Failed to decode kubeconfig: {e}") from e
    try:
        doc = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ValidationError(f"Failed to parse LKE cluster kubeconfig: {e}") from e
    if not isinstance(doc, dict):
        raise ValidationError("Failed to parse LKE cluster kubeconfig: not a mapping")
    return doc


def _named(entries: list[dict[str, Any]] | None, name: str | None, kind: str) -> dict[str, Any]:
    entries = entries or []
    if name is None and entries:
        return entries[0].get(kind) or {}
    for entry in entries:
        if entry.get("name") == name:
            return entry.get(kind) or {}
    raise ValidationError(f"Kubeconfig has no {kind} named {name!r}")


def _normalize_b64(value: str | None) -> str:
    if not value:
        return ""
    try:
        return base64.b64encode(base64.b64decode(value)).decode()
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Kubeconfig carries invalid base64 data: {e}") from e


def parse_kubeconfig(kubeconfig: str) -> KubeAccess:
    """Extract endpoint and credentials of the current context."""
    doc = decode_kubeconfig(kubeconfig)

    context_name = doc.get("current-context")
    context = _named(doc.get("contexts"), context_name or None, "context")
    cluster = _named(doc.get("clusters"), context.get("cluster"), "cluster")
    user = _named(doc.get("users"), context.get("user"), "user") if doc.get("users") else {}

    endpoint = cluster.get("server")
    if not endpoint:
        raise ValidationError("Kubeconfig cluster has no server endpoint")

    return KubeAccess(
        endpoint=endpoint,
        username=user.get("username", ""),
        password=user.get("password", ""),
        ca_data=_normalize_b64(cluster.get("certificate-authority-data")),
        cert_data=_normalize_b64(user.get("client-certificate-data")),
        key_data=_normalize_b64(user.get("client-key-data")),
    )
