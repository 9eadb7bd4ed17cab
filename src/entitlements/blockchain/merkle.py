"""
Cumulative-entitlement Merkle proofs.

Leaves commit to ``(address, cumulative amount)`` pairs the same way an
EVM distributor does: ``keccak256(abi.encodePacked(address, uint256))``.
Interior nodes hash the sorted pair of children, so proofs carry no
left/right flags.
"""

from __future__ import annotations

from itertools import zip_longest
from typing import Any, Iterable, Mapping, Sequence

from eth_abi.packed import encode_packed
from eth_utils import encode_hex, keccak, to_bytes

from ..core.capabilities import normalize_address
from ..core.config import MERKLE_ROOT_BYTES
from ..core.entitlement_exceptions import ArgumentError

UINT256_MAX = 2**256 - 1

ProofElement = bytes | str


def as_bytes32(value: ProofElement, field: str = "hash") -> bytes:
    """Coerce a 32-byte hash given as bytes or 0x-hex into bytes."""
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif isinstance(value, str):
        try:
            raw = to_bytes(hexstr=value)
        except ValueError as exc:
            raise ArgumentError(f"{field} is not valid hex: {value!r}") from exc
    else:
        raise ArgumentError(f"{field} must be bytes or a hex string, got {type(value).__name__}")
    if len(raw) != MERKLE_ROOT_BYTES:
        raise ArgumentError(f"{field} must be {MERKLE_ROOT_BYTES} bytes, got {len(raw)}")
    return raw


def hash_leaf(user: str, amount: int) -> bytes:
    """keccak256(abi.encodePacked(user, amount))"""
    user = normalize_address(user, "leaf user")
    if isinstance(amount, bool) or not isinstance(amount, int) or not 0 <= amount <= UINT256_MAX:
        raise ArgumentError(f"Leaf amount must be a uint256, got {amount!r}")
    return keccak(encode_packed(["address", "uint256"], [user, amount]))


def hash_pair(a: bytes, b: bytes) -> bytes:
    return keccak(b"".join(sorted([a, b])))


def verify_proof(proof: Sequence[ProofElement], root: ProofElement | None, leaf: bytes) -> bool:
    """Return True if ``proof`` links ``leaf`` to ``root``. A missing root never verifies."""
    if root is None:
        return False
    computed = leaf
    for sibling in proof:
        computed = hash_pair(computed, as_bytes32(sibling, "proof element"))
    return computed == as_bytes32(root, "root")


class MerkleTree:
    """
    Builds a distribution tree from ``{address: cumulative amount}``.

    Used off the claim path to publish roots and hand proofs to users.
    An odd node at the end of a layer is carried up unchanged.
    """

    def __init__(self, claims: Mapping[str, int]):
        if not claims:
            raise ArgumentError("Merkle tree requires at least one claim.")
        self.claims = {normalize_address(user, "claim user"): amount for user, amount in claims.items()}
        if len(self.claims) != len(claims):
            raise ArgumentError("Merkle tree claims contain duplicate addresses.")
        self.leaves = sorted(hash_leaf(user, amount) for user, amount in self.claims.items())
        self.layers = self._build_tree(self.leaves)

    @staticmethod
    def _build_tree(leaves: list[bytes]) -> list[list[bytes]]:
        layers = [leaves]
        while len(layers[-1]) > 1:
            current = layers[-1]
            layers.append(
                [
                    a if b is None else hash_pair(a, b)
                    for a, b in zip_longest(current[::2], current[1::2])
                ]
            )
        return layers

    @property
    def root(self) -> bytes:
        return self.layers[-1][0]

    def get_root(self) -> str:
        return encode_hex(self.root)

    def generate_merkle_proof(self, user: str) -> list[str]:
        user_norm = normalize_address(user, "user")
        if user_norm not in self.claims:
            raise ArgumentError(f"{user} has no claim in this tree.")

        idx = self.leaves.index(hash_leaf(user_norm, self.claims[user_norm]))
        proof = []
        for layer in self.layers[:-1]:
            pair_idx = idx + 1 if idx % 2 == 0 else idx - 1
            if pair_idx < len(layer):
                proof.append(encode_hex(layer[pair_idx]))
            idx //= 2
        return proof

    @staticmethod
    def verify_merkle_proof(user: str, amount: int, root: ProofElement, proof: Iterable[ProofElement]) -> bool:
        return verify_proof(list(proof), root, hash_leaf(user, amount))

    def to_distribution(self) -> dict[str, Any]:
        """JSON-ready distribution: root, total, and per-user amount and proof."""
        return {
            "merkle_root": self.get_root(),
            "token_total": hex(sum(self.claims.values())),
            "claims": {
                user: {
                    "amount": amount,
                    "proof": self.generate_merkle_proof(user),
                }
                for user, amount in sorted(self.claims.items())
            },
        }
