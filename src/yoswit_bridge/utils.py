from __future__ import annotations

import datetime
import hashlib
import re
import secrets
import string

from yoswit_bridge.const import LOCAL_TZ

_LOCALE_TAG_RE = re.compile(r"\[/?[a-z]{2}\]")
_ID_ALPHABET = string.ascii_letters + string.digits + "_-"


def md5_hex(text: str) -> str:
    """Return the lowercase hex MD5 digest of a UTF-8 string."""
    return hashlib.md5(text.encode("utf-8")).hexdigest()  # noqa: S324


def double_md5(text: str) -> str:
    """MD5 applied twice; the cloud derives per-gateway command topics this way."""
    return md5_hex(md5_hex(text))


def normalize_mac(mac_address: str) -> str:
    return mac_address.strip().lower()


def reverse_mac(mac_address: str) -> str:
    """``"aa:bb:cc:dd:ee:ff"`` -> ``"ffeeddccbbaa"``"""
    return "".join(reversed(mac_address.split(":")))


def strip_locale_markup(text: str) -> str:
    """Remove ``[en]``/``[/en]`` style locale tags the cloud wraps labels in."""
    return _LOCALE_TAG_RE.sub("", text).strip()


def random_id(length: int = 21) -> str:
    """URL-safe random id in the same alphabet as nanoid."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def local_timestamp(now: datetime.datetime | None = None) -> str:
    """Local wall-clock time as ``YYYY-MM-DD HH:MM:SS``."""
    now = now or datetime.datetime.now(datetime.UTC)
    return now.astimezone(LOCAL_TZ).strftime("%Y-%m-%d %H:%M:%S")
