from __future__ import annotations

import base64
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

from bson import json_util
from bson.json_util import JSONMode, JSONOptions
from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from itsdangerous import BadData, URLSafeTimedSerializer

from .errors import CookieDecodeError, InvalidSessionValue

log = logging.getLogger("mongostore.codec")

Key = Union[str, bytes]

# Extended JSON carries ObjectIds; datetimes use our own "$dt" tag (below).
JSON_OPTIONS = JSONOptions(json_mode=JSONMode.RELAXED, tz_aware=True, tzinfo=timezone.utc)

# Extended JSON $date keeps milliseconds only and always decodes as UTC, so
# datetimes travel as ISO strings with their full precision and offset.
_DT_TAG = "$dt"

_KDF_SALT = b"mongostore.block-key"
_KDF_ITERATIONS = 100_000


def _as_bytes(key: Key) -> bytes:
    return key.encode("utf-8") if isinstance(key, str) else bytes(key)


def _to_wire(obj: Any, path: str = "values") -> Any:
    """
    Prepare a value for extended JSON.

    Mapping keys must be strings and may not start with "$": such keys would
    be read back as BSON types (or as our datetime tag) instead of plain data.
    """
    if isinstance(obj, datetime):
        return {_DT_TAG: obj.isoformat()}
    if isinstance(obj, dict):
        out = {}
        for k, v in obj.items():
            if not isinstance(k, str):
                raise InvalidSessionValue(f"mongostore: {path}: key {k!r} is not a string")
            if k.startswith("$"):
                raise InvalidSessionValue(f"mongostore: {path}: key {k!r} may not start with '$'")
            out[k] = _to_wire(v, f"{path}.{k}")
        return out
    if isinstance(obj, (list, tuple)):
        return [_to_wire(v, f"{path}[{i}]") for i, v in enumerate(obj)]
    return obj


def _from_wire(obj: Any) -> Any:
    if isinstance(obj, dict):
        if len(obj) == 1 and _DT_TAG in obj:
            return datetime.fromisoformat(obj[_DT_TAG])
        return {k: _from_wire(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_from_wire(v) for v in obj]
    return obj


@dataclass(frozen=True)
class KeyPair:
    """
    hash_key authenticates, block_key (optional) encrypts.

    Order matters when several pairs are configured: the first pair encodes,
    all of them are tried in order on decode.
    """
    hash_key: Key
    block_key: Optional[Key] = None


class _PayloadSerializer:
    """
    Serializer handed to itsdangerous: extended JSON, optionally Fernet-encrypted.
    """
    def __init__(self, fernet: Optional[Fernet] = None) -> None:
        self._fernet = fernet

    def dumps(self, obj: Any) -> str:
        raw = json_util.dumps(_to_wire(obj), json_options=JSON_OPTIONS)
        if self._fernet is None:
            return raw
        return self._fernet.encrypt(raw.encode("utf-8")).decode("ascii")

    def loads(self, payload: Union[str, bytes]) -> Any:
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        if self._fernet is not None:
            payload = self._fernet.decrypt(payload.encode("ascii")).decode("utf-8")
        return _from_wire(json_util.loads(payload, json_options=JSON_OPTIONS))


def _derive_fernet(block_key: Key) -> Fernet:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_KDF_SALT,
        iterations=_KDF_ITERATIONS,
    )
    return Fernet(base64.urlsafe_b64encode(kdf.derive(_as_bytes(block_key))))


class CookieCodec:
    """
    Authenticated (and optionally encrypted) codec for one key pair.

    The session name is used as the itsdangerous salt, so a value signed for
    one session name never verifies under another. HMAC-SHA384 is used because
    its 48-byte digest base64-encodes without padding bits, so every character
    of the signature is significant.
    """
    def __init__(self, hash_key: Key, block_key: Optional[Key] = None, *, max_age: int = 0) -> None:
        if not hash_key:
            raise ValueError("mongostore: hash key must not be empty")
        self.max_age = max_age
        fernet = _derive_fernet(block_key) if block_key else None
        self._serializer = URLSafeTimedSerializer(
            _as_bytes(hash_key),
            serializer=_PayloadSerializer(fernet),
            signer_kwargs={"digest_method": hashlib.sha384},
        )

    def encode(self, name: str, value: Any) -> str:
        return self._serializer.dumps(value, salt=name)

    def decode(self, name: str, token: str) -> Any:
        max_age = self.max_age if self.max_age > 0 else None
        try:
            return self._serializer.loads(token, salt=name, max_age=max_age)
        except BadData as e:
            raise CookieDecodeError(f"mongostore: unable to decode {name!r}: {e}") from e

    def try_decode(self, name: str, token: str) -> Tuple[bool, Any]:
        try:
            return True, self.decode(name, token)
        except CookieDecodeError:
            return False, None


def codecs_from_pairs(*pairs: Union[KeyPair, Sequence[Optional[Key]], Key], max_age: int = 0) -> List[CookieCodec]:
    """
    Build the ordered codec chain.

    Accepts KeyPair objects, (hash_key, block_key) tuples or a bare hash key.
    """
    codecs: List[CookieCodec] = []
    for pair in pairs:
        if isinstance(pair, (str, bytes)):
            pair = KeyPair(pair)
        elif not isinstance(pair, KeyPair):
            hash_key, *rest = pair
            pair = KeyPair(hash_key, rest[0] if rest else None)
        codecs.append(CookieCodec(pair.hash_key, pair.block_key, max_age=max_age))
    return codecs


def encode_multi(name: str, value: Any, codecs: Sequence[CookieCodec]) -> str:
    if not codecs:
        raise ValueError("mongostore: no codecs configured")
    return codecs[0].encode(name, value)


def decode_multi(name: str, token: str, codecs: Iterable[CookieCodec]) -> Any:
    tried = 0
    for codec in codecs:
        tried += 1
        ok, value = codec.try_decode(name, token)
        if ok:
            return value
    if not tried:
        raise ValueError("mongostore: no codecs configured")
    log.warning("decode failed name=%s codecs=%d", name, tried)
    raise CookieDecodeError(f"mongostore: {name!r} did not decode with any of {tried} key(s)")
