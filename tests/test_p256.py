"""
P-256 signature verifier tests.
"""

import hashlib
import unittest

from havona import curve
from havona.p256 import P256Verifier, is_p256_identity, p256_identity, webauthn_message_hash

from helpers import P256Key


class TestP256Verifier(unittest.TestCase):

    def setUp(self):
        self.verifier = P256Verifier()
        self.key = P256Key()
        self.message = b"hardware token payload"
        self.digest = hashlib.sha256(self.message).digest()
        self.r, self.s = self.key.sign_digest(self.digest)

    def test_valid_signature(self):
        self.assertTrue(self.verifier.verify(self.digest, self.r, self.s, self.key.x, self.key.y))

    def test_digest_as_integer(self):
        e = int.from_bytes(self.digest, "big")
        self.assertTrue(self.verifier.verify(e, self.r, self.s, self.key.x, self.key.y))

    def test_verify_message(self):
        self.assertTrue(self.verifier.verify_message(self.message, self.r, self.s, self.key.x, self.key.y))

    def test_wrong_digest(self):
        other = hashlib.sha256(b"something else").digest()
        self.assertFalse(self.verifier.verify(other, self.r, self.s, self.key.x, self.key.y))

    def test_wrong_public_key(self):
        other = P256Key()
        self.assertFalse(self.verifier.verify(self.digest, self.r, self.s, other.x, other.y))

    def test_tampered_signature(self):
        self.assertFalse(self.verifier.verify(self.digest, self.r, (self.s + 1) % curve.N, self.key.x, self.key.y))

    def test_scalars_out_of_range(self):
        for r, s in [(0, self.s), (self.r, 0), (curve.N, self.s), (self.r, curve.N)]:
            self.assertFalse(self.verifier.verify(self.digest, r, s, self.key.x, self.key.y))

    def test_coordinates_out_of_range(self):
        self.assertFalse(self.verifier.verify(self.digest, self.r, self.s, curve.P, self.key.y))
        self.assertFalse(self.verifier.verify(self.digest, self.r, self.s, -1, self.key.y))

    def test_off_curve_key_rejected(self):
        self.assertFalse(self.verifier.verify(self.digest, self.r, self.s, self.key.x, (self.key.y + 1) % curve.P))

    def test_zero_point_rejected(self):
        self.assertFalse(self.verifier.verify(self.digest, self.r, self.s, 0, 0))

    def test_non_integer_scalars_rejected(self):
        self.assertFalse(self.verifier.verify(self.digest, 1.5, self.s, self.key.x, self.key.y))
        self.assertFalse(self.verifier.verify(self.digest, self.r, "1", self.key.x, self.key.y))
        self.assertFalse(self.verifier.verify(self.digest, self.r, self.s, float(self.key.x), self.key.y))
        self.assertFalse(self.verifier.verify(self.digest, True, self.s, self.key.x, self.key.y))

    def test_malformed_digest_rejected(self):
        self.assertFalse(self.verifier.verify(self.digest.hex(), self.r, self.s, self.key.x, self.key.y))
        self.assertFalse(self.verifier.verify(None, self.r, self.s, self.key.x, self.key.y))
        self.assertFalse(self.verifier.verify_message("text", self.r, self.s, self.key.x, self.key.y))


class TestSkipVerification(unittest.TestCase):

    def setUp(self):
        self.verifier = P256Verifier(skip_verification=True)
        self.key = P256Key()

    def test_accepts_any_signature_for_valid_key(self):
        self.assertTrue(self.verifier.verify(b"\x00" * 32, 1, 1, self.key.x, self.key.y))

    def test_still_rejects_off_curve_key(self):
        self.assertFalse(self.verifier.verify(b"\x00" * 32, 1, 1, self.key.x, (self.key.y + 1) % curve.P))

    def test_still_rejects_out_of_range_scalars(self):
        self.assertFalse(self.verifier.verify(b"\x00" * 32, 0, 1, self.key.x, self.key.y))

    def test_flag_is_read_only(self):
        with self.assertRaises(AttributeError):
            self.verifier.skip_verification = False
        self.assertTrue(self.verifier.skip_verification)


class TestIdentities(unittest.TestCase):

    def test_p256_identity_format(self):
        identity = p256_identity(curve.GX, curve.GY)
        self.assertTrue(identity.startswith("p256:"))
        self.assertEqual(len(identity), 5 + 128)
        self.assertTrue(is_p256_identity(identity))

    def test_non_identities(self):
        self.assertFalse(is_p256_identity("p256:abc"))
        self.assertFalse(is_p256_identity("0x" + "11" * 20))
        self.assertFalse(is_p256_identity(None))

    def test_webauthn_message_hash(self):
        auth_data = b"\x49" * 37
        client_data = b'{"type":"webauthn.get","challenge":"abc"}'
        expected = hashlib.sha256(auth_data + hashlib.sha256(client_data).digest()).digest()
        self.assertEqual(webauthn_message_hash(auth_data, client_data), expected)

    def test_webauthn_assertion_verifies(self):
        key = P256Key()
        message_hash = webauthn_message_hash(b"\x01" * 37, b'{"challenge":"xyz"}')
        r, s = key.sign_digest(message_hash)
        self.assertTrue(P256Verifier().verify(message_hash, r, s, key.x, key.y))


if __name__ == '__main__':
    unittest.main()
