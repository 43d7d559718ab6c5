import sys
import threading
from pathlib import Path
from typing import Dict, Optional

import pytest

# Make ``ksynchrony`` importable from a source checkout without installing.
project_root = Path(__file__).resolve().parents[2]
src_path = project_root / "src"
sys.path.insert(0, str(src_path))

from ksynchrony.core.exceptions import NodeNotFoundError, NodeUnavailableError  # noqa: E402
from ksynchrony.core.node_client import BlockInfo, BlockRef, NodeClient  # noqa: E402

ADDRESS = "kaspa:qz7ulu4c25dh7fzec9zjyrmlhnkzrg4wmf89q7gzr3gfrsj3uz6xjceef60sd"
OTHER_ADDRESS = "kaspatest:qr0lr4ml9fn3chekrqmjdkergxl93l4wrk3dankcgvjq776s9wn9jhfl4wsle"
TX_ID = "ab" * 32


class FakeNodeClient(NodeClient):
    """In-memory node with switchable failure modes."""

    def __init__(self, tip_score: int = 0):
        self.tip_score = tip_score
        self.accepting: Dict[str, BlockRef] = {}
        self.blocks: Dict[str, BlockInfo] = {}
        self.balances: Dict[str, int] = {}
        self.fail_with: Optional[Exception] = None
        self.tip_fail_with: Optional[Exception] = None
        self.failing_subjects = set()
        self.block_calls = 0
        self.closed = False
        self._lock = threading.Lock()

    def accept(self, subject_id: str, score: Optional[int], block_hash: str = "block-1") -> None:
        self.accepting[subject_id] = BlockRef(hash=block_hash, ordering_score=score)

    def get_accepting_block(self, subject_id):
        if self.fail_with is not None:
            raise self.fail_with
        if subject_id in self.failing_subjects:
            raise NodeUnavailableError(f"timeout reading {subject_id}")
        return self.accepting.get(subject_id)

    def get_block(self, block_hash):
        with self._lock:
            self.block_calls += 1
        if block_hash not in self.blocks:
            raise NodeNotFoundError(f"block {block_hash} not found")
        return self.blocks[block_hash]

    def get_virtual_tip_score(self):
        if self.tip_fail_with is not None:
            raise self.tip_fail_with
        if self.fail_with is not None:
            raise self.fail_with
        return self.tip_score

    def get_balance(self, address):
        return self.balances.get(address, 0)

    def close(self):
        self.closed = True


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def node():
    return FakeNodeClient(tip_score=1000)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ksync(node, clock):
    from ksynchrony.client import KSynchrony
    from ksynchrony.core.config import KSynchronyConfig

    instance = KSynchrony(KSynchronyConfig(), node_client=node, clock=clock, sleep=lambda _s: None)
    yield instance
    instance.shutdown()


@pytest.fixture
def address():
    return ADDRESS


@pytest.fixture
def other_address():
    return OTHER_ADDRESS


@pytest.fixture
def tx_id():
    return TX_ID
