"""DIGEST-MD5 SASL helpers: challenge parsing and response computation."""

from __future__ import annotations

import hashlib
import secrets

_NONCE_COUNT = "00000001"
_QOP = "auth"

_READING_KEY = 0
_READING_VALUE = 1
_INSIDE_QUOTES = 2


def parse_params(text: str) -> dict[str, str]:
    """Parse a ``key=value,key="quoted value"`` digest challenge.

    Raises ValueError naming the byte offset of the first syntax error.
    """
    raw = text.encode("utf-8", "surrogateescape")
    params: dict[str, str] = {}
    key = bytearray()
    value = bytearray()
    state = _READING_KEY

    def store() -> None:
        params[key.decode("utf-8", "surrogateescape")] = value.decode(
            "utf-8", "surrogateescape"
        )

    for position in range(len(raw) + 1):
        at_end = position == len(raw)
        if state == _READING_KEY:
            if at_end:
                raise ValueError(f"syntax error on {position}")
            char = raw[position]
            if char == ord("="):
                state = _READING_VALUE
            else:
                key.append(char)
        elif state == _READING_VALUE:
            if at_end:
                store()
                break
            char = raw[position]
            if char == ord(","):
                store()
                state = _READING_KEY
                key.clear()
                value.clear()
            elif char == ord('"'):
                if value:
                    raise ValueError(f"syntax error on {position}")
                state = _INSIDE_QUOTES
            else:
                value.append(char)
        else:
            if at_end:
                raise ValueError(f"syntax error on {position}")
            char = raw[position]
            if char == ord('"'):
                state = _READING_VALUE
            else:
                value.append(char)
    return params


def _md5(data: bytes) -> bytes:
    return hashlib.md5(data).digest()


def compute_response(
    params: dict[str, str],
    uri: str,
    username: str,
    password: str,
    cnonce: str | None = None,
) -> str:
    """Build the DIGEST-MD5 response to a parsed challenge.

    A random client nonce is made when ``cnonce`` is not given.
    """
    if cnonce is None:
        cnonce = secrets.token_hex(16)
    realm = params.get("realm", "")
    nonce = params.get("nonce", "")
    authzid = params.get("authzid", "")

    secret_hash = _md5(f"{username}:{realm}:{password}".encode("utf-8"))
    a1 = secret_hash + f":{nonce}:{cnonce}".encode("utf-8")
    if authzid:
        a1 += f":{authzid}".encode("utf-8")
    a2 = f"AUTHENTICATE:{uri}".encode("utf-8")
    ha1 = _md5(a1).hex()
    ha2 = _md5(a2).hex()

    kd = f"{ha1}:{nonce}:{_NONCE_COUNT}:{cnonce}:{_QOP}:{ha2}"
    response = _md5(kd.encode("utf-8")).hex()
    return (
        f'username="{username}",realm="{realm}",nonce="{nonce}",'
        f'cnonce="{cnonce}",nc={_NONCE_COUNT},qop={_QOP},'
        f'digest-uri="{uri}",response={response}'
    )