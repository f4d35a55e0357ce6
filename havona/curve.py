"""
P-256 Curve Arithmetic

Affine point arithmetic over NIST P-256 (secp256r1), the curve used by
hardware security tokens and WebAuthn authenticators.

    y^2 = x^3 + a*x + b  (mod p),  a = -3

All field and scalar inversions go through Fermat's little theorem on top of
an explicit square-and-multiply exponentiation, so the only primitive relied
upon is integer multiplication modulo a prime.

Python integers are not constant-time. These routines are used only for
verification of public data (signatures and public keys), never with secret
scalars.
"""

from dataclasses import dataclass

# NIST P-256 domain parameters (FIPS 186-4, D.1.2.3)
P = 0xFFFFFFFF00000001000000000000000000000000FFFFFFFFFFFFFFFFFFFFFFFF
N = 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551
A = 0xFFFFFFFF00000001000000000000000000000000FFFFFFFFFFFFFFFFFFFFFFFC
B = 0x5AC635D8AA3A93E7B3EBBD55769886BC651D06B0CC53B0F63BCE3C3E27D2604B
GX = 0x6B17D1F2E12C4247F8BCE6E563A440F277037D812DEB33A0F4A13945D898C296
GY = 0x4FE342E2FE1A7F9B8EE7EB4A7C0F9E162BCE33576B315ECECBB6406837BF51F5


@dataclass(frozen=True)
class Point:
    """
    Affine curve point.

    The identity element is flagged explicitly with ``infinity`` rather than
    encoded as a sentinel coordinate pair.
    """
    x: int
    y: int
    infinity: bool = False

    def __neg__(self) -> "Point":
        if self.infinity:
            return self
        return Point(self.x, (-self.y) % P)


INFINITY = Point(0, 0, infinity=True)
G = Point(GX, GY)


def mod_exp(base: int, exponent: int, modulus: int) -> int:
    """
    Left-to-right square-and-multiply modular exponentiation.

    Args:
        base: Base, reduced modulo ``modulus`` first
        exponent: Non-negative exponent
        modulus: Positive modulus

    Returns:
        base^exponent mod modulus
    """
    if modulus <= 0:
        raise ValueError("modulus must be positive")
    if exponent < 0:
        raise ValueError("exponent must be non-negative")
    if modulus == 1:
        return 0

    base %= modulus
    result = 1
    for bit in bin(exponent)[2:]:
        result = (result * result) % modulus
        if bit == "1":
            result = (result * base) % modulus
    return result


def mod_inverse(a: int, m: int) -> int:
    """
    Modular inverse via Fermat's little theorem: a^(m-2) mod m.

    ``m`` must be prime (true for both P and N).

    Raises:
        ValueError: If a is congruent to zero modulo m
    """
    if a % m == 0:
        raise ValueError("zero has no modular inverse")
    return mod_exp(a, m - 2, m)


def is_on_curve(x: int, y: int) -> bool:
    """
    Check that (x, y) is a finite point on P-256.

    The zero point and coordinates outside the field are rejected.
    """
    if x == 0 and y == 0:
        return False
    if not (0 <= x < P and 0 <= y < P):
        return False

    lhs = (y * y) % P
    rhs = (x * x * x + A * x + B) % P
    return lhs == rhs


def point_double(pt: Point) -> Point:
    """Double a point using the affine tangent formula."""
    if pt.infinity or pt.y == 0:
        return INFINITY

    slope = ((3 * pt.x * pt.x + A) * mod_inverse(2 * pt.y, P)) % P
    x3 = (slope * slope - 2 * pt.x) % P
    y3 = (slope * (pt.x - x3) - pt.y) % P
    return Point(x3, y3)


def point_add(p1: Point, p2: Point) -> Point:
    """
    Add two points using the affine chord formula.

    Equal inputs are delegated to point_double since the chord slope is
    undefined there; opposite inputs sum to infinity.
    """
    if p1.infinity:
        return p2
    if p2.infinity:
        return p1

    if p1.x == p2.x:
        if p1.y == p2.y:
            return point_double(p1)
        return INFINITY

    slope = ((p2.y - p1.y) * mod_inverse(p2.x - p1.x, P)) % P
    x3 = (slope * slope - p1.x - p2.x) % P
    y3 = (slope * (p1.x - x3) - p1.y) % P
    return Point(x3, y3)


def scalar_mult(pt: Point, k: int) -> Point:
    """
    Compute k*pt with double-and-add over the bits of k (most significant first).
    """
    if k < 0:
        raise ValueError("scalar must be non-negative")

    result = INFINITY
    if k == 0 or pt.infinity:
        return result

    for bit in bin(k)[2:]:
        result = point_double(result)
        if bit == "1":
            result = point_add(result, pt)
    return result


def double_scalar_mult(k1: int, p1: Point, k2: int, p2: Point) -> Point:
    """
    Compute k1*p1 + k2*p2 with a single shared doubling chain (Shamir's trick).
    """
    if k1 < 0 or k2 < 0:
        raise ValueError("scalars must be non-negative")

    combined = point_add(p1, p2)
    result = INFINITY
    for i in range(max(k1.bit_length(), k2.bit_length()) - 1, -1, -1):
        result = point_double(result)
        b1 = (k1 >> i) & 1
        b2 = (k2 >> i) & 1
        if b1 and b2:
            result = point_add(result, combined)
        elif b1:
            result = point_add(result, p1)
        elif b2:
            result = point_add(result, p2)
    return result
