from typing import List, Optional

from pydantic import BaseModel, Field

# Keys, signatures, digests and P-256 scalars travel as 0x hex;
# content travels as base64.


class SetBlobRequest(BaseModel):
    key: str
    content_b64: str


class SignedSetBlobRequest(BaseModel):
    key: str
    content_b64: str
    signer: str
    deadline: int
    signature: str


class P256SetBlobRequest(BaseModel):
    key: str
    content_b64: str
    r: str
    s: str
    x: str
    y: str


class WebAuthnSetBlobRequest(P256SetBlobRequest):
    message_hash: str


class BatchSetBlobRequest(BaseModel):
    keys: List[str] = Field(default_factory=list)
    contents_b64: List[str] = Field(default_factory=list)


class BatchGetRequest(BaseModel):
    keys: List[str] = Field(default_factory=list)


class GrantRequest(BaseModel):
    key: str
    identity: str


class GrantBatchRequest(BaseModel):
    keys: List[str] = Field(default_factory=list)
    identities: List[str] = Field(default_factory=list)


class DigestRequest(BaseModel):
    key: str
    content_b64: str
    signer: str
    deadline: int


class SetVerifierRequest(BaseModel):
    # Deployment address of the new verifier; generated when omitted
    address: Optional[str] = None


class TransferOperatorRequest(BaseModel):
    new_operator: str
