"""
Tests for transaction id and reference generation
"""

import re
import threading

from globalpay.identifiers import IdentifierGenerator


TRANSACTION_ID_PATTERN = re.compile(r"^TXN[0-9A-F]{32}$")
REFERENCE_PATTERN = re.compile(r"^REF[0-9A-F]{20}$")


class TestIdentifierGenerator:

    def setup_method(self):
        self.generator = IdentifierGenerator()

    def test_formats(self):
        assert TRANSACTION_ID_PATTERN.match(self.generator.new_transaction_id())
        assert REFERENCE_PATTERN.match(self.generator.new_reference())

    def test_namespaces_do_not_overlap(self):
        ids = {self.generator.new_transaction_id() for _ in range(100)}
        refs = {self.generator.new_reference() for _ in range(100)}
        assert not ids & refs

    def test_unique_under_concurrent_issuance(self):
        """Ids issued from many threads at once never collide"""
        issued = []
        lock = threading.Lock()
        barrier = threading.Barrier(8)

        def issue():
            barrier.wait()
            batch = [self.generator.new_transaction_id() for _ in range(1000)]
            batch += [self.generator.new_reference() for _ in range(1000)]
            with lock:
                issued.extend(batch)

        threads = [threading.Thread(target=issue) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(issued) == 16000
        assert len(set(issued)) == 16000
