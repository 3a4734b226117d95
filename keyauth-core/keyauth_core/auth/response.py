"""Authentication result and the verification decision."""
from dataclasses import dataclass

from keyauth_core.crypto.keys import KeyHandle, hash_for, verify_signature


@dataclass(frozen=True)
class AuthenticatorResponse:
    """Outcome of one authentication attempt.

    ``signature`` and ``key`` are both ``None`` when every candidate key was
    declined; :meth:`verify` is then ``False``.
    """

    payload: bytes
    signature: bytes | None
    key: KeyHandle | None
    flags: int = 0

    @property
    def denied(self) -> bool:
        return self.signature is None or self.key is None

    def verify(self) -> bool:
        """Return True if ``signature`` is a valid signature of ``payload`` by ``key``.

        RSA verification picks its hash from ``flags`` (4: SHA-512, 2: SHA-256,
        else SHA-1).  Ed25519 and ECDSA always use SHA-512 and ignore ``flags``.

        Raises
        ------
        UnsupportedAlgorithm
            If ``key`` has a type without a verifier.
        """
        if self.denied:
            return False
        hash_name = hash_for(self.key.key_type, self.flags)
        return verify_signature(self.key, hash_name, self.payload, self.signature)
