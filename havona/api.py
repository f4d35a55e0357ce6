"""
HTTP API for the Havona persistor.

The enclave gateway authenticates the transaction sender and passes it in the
X-Havona-Caller header; every route hands that identity to the store as the
caller. Store rejections are mapped to HTTP statuses with a JSON body
{"error": code, "detail": message}.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse

from .config import build_store
from .errors import HavonaError, InvalidInput
from .logging_config import set_request_id
from .models import (
    BatchGetRequest,
    BatchSetBlobRequest,
    DigestRequest,
    GrantBatchRequest,
    GrantRequest,
    P256SetBlobRequest,
    SetBlobRequest,
    SetVerifierRequest,
    SignedSetBlobRequest,
    TransferOperatorRequest,
    WebAuthnSetBlobRequest,
)
from .p256 import P256Verifier
from .store import BlobStore
from .util import b64d, b64e, from_hex, int_from_hex, normalize_address, to_hex

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    "ACCESS_DENIED": 403,
    "UNAUTHORIZED": 403,
    "INVALID_SIGNATURE": 400,
    "SIGNATURE_EXPIRED": 400,
    "EXPIRY_TOO_FAR": 400,
    "INVALID_INPUT": 400,
    "BATCH_LENGTH_MISMATCH": 400,
    "RECORD_NOT_FOUND": 404,
    "SIGNATURE_REPLAYED": 409,
    "VERSION_LIMIT_EXCEEDED": 409,
    "REENTRANT_CALL": 409,
    "BATCH_TOO_LARGE": 413,
    "INDEX_OUT_OF_BOUNDS": 416,
}


def _bytes(value: str, field: str, length: Optional[int] = None) -> bytes:
    try:
        raw = from_hex(value)
    except ValueError as exc:
        raise InvalidInput(field, str(exc)) from exc
    if length is not None and len(raw) != length:
        raise InvalidInput(field, f"must be {length} bytes")
    return raw


def _scalar(value: str, field: str) -> int:
    try:
        return int_from_hex(value)
    except ValueError as exc:
        raise InvalidInput(field, str(exc)) from exc


def _content(value: str, field: str = "content_b64") -> bytes:
    try:
        return b64d(value)
    except ValueError as exc:
        raise InvalidInput(field, "must be base64") from exc


def get_store(request: Request) -> BlobStore:
    return request.app.state.store


def create_app(store: Optional[BlobStore] = None) -> FastAPI:
    """Build the API around a store (default: one wired from the environment)."""
    app = FastAPI(title="Havona Persistor")
    app.state.store = store if store is not None else build_store()
    logger.info("API ready", extra={"store": app.state.store.address})

    @app.middleware("http")
    async def _request_id(request: Request, call_next):
        request_id = set_request_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(HavonaError)
    async def _havona_error(request: Request, exc: HavonaError):
        return JSONResponse(
            status_code=STATUS_BY_CODE.get(exc.code, 400),
            content={"error": exc.code, "detail": exc.message},
        )

    @app.get("/health")
    def health(store: BlobStore = Depends(get_store)):
        return {"status": "ok", "store": store.address, "records": store.total_records()}

    # ------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------

    @app.post("/blobs")
    def set_blob(
        req: SetBlobRequest,
        x_havona_caller: str = Header(default=""),
        store: BlobStore = Depends(get_store)
    ):
        key = _bytes(req.key, "key", 32)
        store.set_blob(x_havona_caller, key, _content(req.content_b64))
        return {"key": to_hex(key), "identity": store.operator}

    @app.post("/blobs/signed")
    def set_blob_signed(
        req: SignedSetBlobRequest,
        x_havona_caller: str = Header(default=""),
        store: BlobStore = Depends(get_store)
    ):
        key = _bytes(req.key, "key", 32)
        identity = store.set_blob_with_signature(
            x_havona_caller,
            key,
            _content(req.content_b64),
            req.signer,
            req.deadline,
            _bytes(req.signature, "signature"),
        )
        return {"key": to_hex(key), "identity": identity}

    @app.post("/blobs/p256")
    def set_blob_p256(
        req: P256SetBlobRequest,
        x_havona_caller: str = Header(default=""),
        store: BlobStore = Depends(get_store)
    ):
        key = _bytes(req.key, "key", 32)
        identity = store.set_blob_with_p256(
            x_havona_caller,
            key,
            _content(req.content_b64),
            _scalar(req.r, "r"),
            _scalar(req.s, "s"),
            _scalar(req.x, "x"),
            _scalar(req.y, "y"),
        )
        return {"key": to_hex(key), "identity": identity}

    @app.post("/blobs/webauthn")
    def set_blob_webauthn(
        req: WebAuthnSetBlobRequest,
        x_havona_caller: str = Header(default=""),
        store: BlobStore = Depends(get_store)
    ):
        key = _bytes(req.key, "key", 32)
        identity = store.set_blob_with_webauthn(
            x_havona_caller,
            key,
            _content(req.content_b64),
            _bytes(req.message_hash, "message_hash", 32),
            _scalar(req.r, "r"),
            _scalar(req.s, "s"),
            _scalar(req.x, "x"),
            _scalar(req.y, "y"),
        )
        return {"key": to_hex(key), "identity": identity}

    @app.post("/blobs/batch")
    def set_blobs_batch(
        req: BatchSetBlobRequest,
        x_havona_caller: str = Header(default=""),
        store: BlobStore = Depends(get_store)
    ):
        keys = [_bytes(k, "keys", 32) for k in req.keys]
        contents = [_content(c, "contents_b64") for c in req.contents_b64]
        written = store.set_blobs_batch(x_havona_caller, keys, contents)
        return {"written": written}

    @app.delete("/blobs/{key}")
    def remove_blob(
        key: str,
        x_havona_caller: str = Header(default=""),
        store: BlobStore = Depends(get_store)
    ):
        raw = _bytes(key, "key", 32)
        store.remove_blob(x_havona_caller, raw)
        return {"key": to_hex(raw), "removed": True}

    # ------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------

    @app.get("/blobs")
    def list_blobs(
        offset: int = 0,
        limit: int = 20,
        x_havona_caller: str = Header(default=""),
        store: BlobStore = Depends(get_store)
    ):
        page = store.get_paginated(x_havona_caller, offset, limit)
        return {
            "total": page.total,
            "offset": page.offset,
            "limit": page.limit,
            "entries": [e.to_dict() for e in page.entries],
        }

    @app.post("/blobs/batch_get")
    def get_blobs_batch(
        req: BatchGetRequest,
        x_havona_caller: str = Header(default=""),
        store: BlobStore = Depends(get_store)
    ):
        keys = [_bytes(k, "keys", 32) for k in req.keys]
        contents = store.get_blobs_batch(x_havona_caller, keys)
        return {"contents_b64": [b64e(c) for c in contents]}

    @app.get("/blobs/{key}")
    def get_blob(
        key: str,
        x_havona_caller: str = Header(default=""),
        store: BlobStore = Depends(get_store)
    ):
        raw = _bytes(key, "key", 32)
        content = store.get_blob(x_havona_caller, raw)
        return {
            "key": to_hex(raw),
            "content_b64": b64e(content),
            "version_count": store.version_count(raw),
        }

    @app.get("/blobs/{key}/hash")
    def get_blob_hash(
        key: str,
        x_havona_caller: str = Header(default=""),
        store: BlobStore = Depends(get_store)
    ):
        raw = _bytes(key, "key", 32)
        return {"key": to_hex(raw), "digest": to_hex(store.get_blob_hash(x_havona_caller, raw))}

    @app.get("/blobs/{key}/versions/{version}")
    def get_version(
        key: str,
        version: int,
        x_havona_caller: str = Header(default=""),
        store: BlobStore = Depends(get_store)
    ):
        raw = _bytes(key, "key", 32)
        content = store.get_version(x_havona_caller, raw, version)
        return {"key": to_hex(raw), "version": version, "content_b64": b64e(content)}

    # ------------------------------------------------------------
    # Access
    # ------------------------------------------------------------

    @app.post("/access/grant")
    def grant_access(
        req: GrantRequest,
        x_havona_caller: str = Header(default=""),
        store: BlobStore = Depends(get_store)
    ):
        changed = store.grant_access(x_havona_caller, _bytes(req.key, "key", 32), req.identity)
        return {"changed": changed}

    @app.post("/access/revoke")
    def revoke_access(
        req: GrantRequest,
        x_havona_caller: str = Header(default=""),
        store: BlobStore = Depends(get_store)
    ):
        changed = store.revoke_access(x_havona_caller, _bytes(req.key, "key", 32), req.identity)
        return {"changed": changed}

    @app.post("/access/grant_batch")
    def grant_access_batch(
        req: GrantBatchRequest,
        x_havona_caller: str = Header(default=""),
        store: BlobStore = Depends(get_store)
    ):
        keys = [_bytes(k, "keys", 32) for k in req.keys]
        return {"changed": store.grant_access_batch(x_havona_caller, keys, req.identities)}

    @app.get("/access/{key}/{identity}")
    def can_read(key: str, identity: str, store: BlobStore = Depends(get_store)):
        return {"can_read": store.can_read(identity, _bytes(key, "key", 32))}

    # ------------------------------------------------------------
    # Typed-data helpers
    # ------------------------------------------------------------

    @app.get("/nonces/{signer}")
    def nonce(signer: str, store: BlobStore = Depends(get_store)):
        return {"signer": signer.lower(), "nonce": store.nonce(signer)}

    @app.get("/domain")
    def domain(store: BlobStore = Depends(get_store)):
        return store.auth.domain.to_dict()

    @app.post("/digest")
    def write_digest(req: DigestRequest, store: BlobStore = Depends(get_store)):
        key = _bytes(req.key, "key", 32)
        digest = store.write_digest(key, _content(req.content_b64), req.signer, req.deadline)
        return {"digest": to_hex(digest), "nonce": store.nonce(req.signer)}

    # ------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------

    @app.post("/admin/verifier")
    def set_verifier(
        req: SetVerifierRequest,
        x_havona_caller: str = Header(default=""),
        store: BlobStore = Depends(get_store)
    ):
        # Always a verifying instance; skipping is deploy-time configuration only
        address = None
        if req.address is not None:
            try:
                address = normalize_address(req.address)
            except ValueError as exc:
                raise InvalidInput("address", str(exc)) from exc
        verifier = P256Verifier(address=address)
        store.set_verifier(x_havona_caller, verifier)
        return {"verifier": verifier.address, "skip_verification": verifier.skip_verification}

    @app.post("/admin/operator")
    def transfer_operator(
        req: TransferOperatorRequest,
        x_havona_caller: str = Header(default=""),
        store: BlobStore = Depends(get_store)
    ):
        store.transfer_operator(x_havona_caller, req.new_operator)
        return {"operator": store.operator}

    @app.get("/events")
    def events(store: BlobStore = Depends(get_store)) -> Dict[str, Any]:
        entries: List[Dict[str, Any]] = store.events.export()
        return {
            "kid": store.events.signer.kid,
            "public_key_b64": store.events.signer.public_key_b64,
            "entries": entries,
        }

    return app
