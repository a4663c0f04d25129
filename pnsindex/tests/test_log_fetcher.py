import unittest
from unittest.mock import MagicMock, call, patch

from pnsindex.core.errors import LogFetchError
from pnsindex.core.log_fetcher import ContractLogFetcher
from pnsindex.core.range_planner import ScanRange
from pnsindex.tests.utils import (
    DOMAIN_NFT_ADDRESS,
    REGISTRY_ADDRESS,
    RESOLVER_ADDRESS,
    create_test_contracts,
)

_TOPICS = ["0x" + "ab" * 32]


def _create_fetcher(w3, **kwargs) -> ContractLogFetcher:
    args = {
        "log_chunk_size": 2000,
        "min_log_chunk_size": 100,
        "max_retries": 2,
        "retry_delay": 0,
        "inter_contract_delay": 0,
        "inter_chunk_delay": 0,
    }
    args.update(kwargs)
    return ContractLogFetcher(w3, **args)


def _called_ranges(w3):
    return [
        (c.args[0]["fromBlock"], c.args[0]["toBlock"]) for c in w3.eth.get_logs.call_args_list
    ]


class TestContractLogFetcher(unittest.TestCase):
    """Test log fetching with chunking, halving and retries."""

    def setUp(self):
        self.w3 = MagicMock()
        self.w3.eth.get_logs.return_value = []

    def test_latest_block_number(self):
        self.w3.eth.block_number = 12345
        self.assertEqual(_create_fetcher(self.w3).get_latest_block_number(), 12345)

    def test_window_is_split_into_chunks(self):
        fetcher = _create_fetcher(self.w3)
        fetcher.fetch_logs(REGISTRY_ADDRESS, _TOPICS, ScanRange(1, 4500))
        self.assertEqual(_called_ranges(self.w3), [(1, 2000), (2001, 4000), (4001, 4500)])
        filter_params = self.w3.eth.get_logs.call_args_list[0].args[0]
        self.assertEqual(filter_params["address"].lower(), REGISTRY_ADDRESS)
        self.assertEqual(filter_params["topics"], [_TOPICS])

    def test_logs_are_concatenated_in_chunk_order(self):
        self.w3.eth.get_logs.side_effect = [[{"n": 1}], [{"n": 2}, {"n": 3}]]
        fetcher = _create_fetcher(self.w3, log_chunk_size=10, min_log_chunk_size=10)
        logs = fetcher.fetch_logs(REGISTRY_ADDRESS, _TOPICS, ScanRange(1, 20))
        self.assertEqual([log["n"] for log in logs], [1, 2, 3])

    def test_range_too_large_halves_chunk(self):
        def get_logs(filter_params):
            if filter_params["toBlock"] - filter_params["fromBlock"] + 1 > 1000:
                raise ValueError({"code": -32005, "message": "query returned more than 10000 results"})
            return [{"fromBlock": filter_params["fromBlock"]}]

        self.w3.eth.get_logs.side_effect = get_logs
        fetcher = _create_fetcher(self.w3)
        logs = fetcher.fetch_logs(REGISTRY_ADDRESS, _TOPICS, ScanRange(1, 2000))

        self.assertEqual(_called_ranges(self.w3), [(1, 2000), (1, 1000), (1001, 2000)])
        self.assertEqual([log["fromBlock"] for log in logs], [1, 1001])

    def test_sub_chunks_keep_inter_chunk_delay(self):
        def get_logs(filter_params):
            if filter_params["toBlock"] - filter_params["fromBlock"] + 1 > 1000:
                raise ValueError({"code": -32005, "message": "query returned more than 10000 results"})
            return []

        self.w3.eth.get_logs.side_effect = get_logs
        fetcher = _create_fetcher(self.w3, inter_chunk_delay=0.5)
        with patch("pnsindex.core.log_fetcher.time.sleep") as mock_sleep:
            fetcher.fetch_logs(REGISTRY_ADDRESS, _TOPICS, ScanRange(1, 2000))

        self.assertEqual(_called_ranges(self.w3), [(1, 2000), (1, 1000), (1001, 2000)])
        self.assertEqual(mock_sleep.call_args_list, [call(0.5), call(0.5)])

    def test_range_too_large_at_minimum_chunk_fails(self):
        self.w3.eth.get_logs.side_effect = ValueError("block range is too wide")
        fetcher = _create_fetcher(self.w3, log_chunk_size=200, min_log_chunk_size=100)
        with self.assertRaises(LogFetchError) as cm:
            fetcher.fetch_logs(REGISTRY_ADDRESS, _TOPICS, ScanRange(1, 200))
        self.assertEqual((cm.exception.from_block, cm.exception.to_block), (1, 200))
        # 200 -> 100 + 100, the first half fails at the floor.
        self.assertEqual(_called_ranges(self.w3), [(1, 200), (1, 100)])

    def test_transient_error_is_retried(self):
        self.w3.eth.get_logs.side_effect = [Exception("429 Too Many Requests"), [{"n": 1}]]
        fetcher = _create_fetcher(self.w3)
        logs = fetcher.fetch_logs(REGISTRY_ADDRESS, _TOPICS, ScanRange(1, 5))
        self.assertEqual(logs, [{"n": 1}])
        self.assertEqual(self.w3.eth.get_logs.call_count, 2)

    def test_exhausted_retries_raise(self):
        self.w3.eth.get_logs.side_effect = ConnectionError("connection reset")
        fetcher = _create_fetcher(self.w3, max_retries=2)
        with self.assertRaises(LogFetchError) as cm:
            fetcher.fetch_logs(REGISTRY_ADDRESS, _TOPICS, ScanRange(10, 15))
        self.assertEqual(cm.exception.contract, REGISTRY_ADDRESS)
        self.assertEqual((cm.exception.from_block, cm.exception.to_block), (10, 15))
        # One attempt plus two retries.
        self.assertEqual(self.w3.eth.get_logs.call_count, 3)

    def test_fetch_batch_is_sequential_in_priority_order(self):
        contracts = list(reversed(create_test_contracts()))
        fetcher = _create_fetcher(self.w3)
        results = fetcher.fetch_batch(contracts, ScanRange(1, 5))

        fetched_addresses = [
            c.args[0]["address"].lower() for c in self.w3.eth.get_logs.call_args_list
        ]
        self.assertEqual(
            fetched_addresses, [REGISTRY_ADDRESS, DOMAIN_NFT_ADDRESS, RESOLVER_ADDRESS]
        )
        self.assertEqual([c.role for c, _ in results], ["registry", "domain_nft", "resolver"])

    def test_fetch_batch_failure_stops_later_contracts(self):
        self.w3.eth.get_logs.side_effect = [[], ConnectionError("down")] + [
            ConnectionError("down")
        ] * 10
        fetcher = _create_fetcher(self.w3, max_retries=0)
        with self.assertRaises(LogFetchError) as cm:
            fetcher.fetch_batch(create_test_contracts(), ScanRange(1, 5))
        self.assertEqual(cm.exception.contract, DOMAIN_NFT_ADDRESS)
        self.assertEqual(self.w3.eth.get_logs.call_count, 2)


if __name__ == "__main__":
    unittest.main()
