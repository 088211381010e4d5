"""Aggregate per-op statistics of finished cases."""

import collections
import json
import os
from typing import Dict

from ..utils.logger import logger as logging


def count_ops(graph_def) -> Dict[str, int]:
    """Histogram of op types in a GraphDef."""
    return dict(collections.Counter(node.op for node in graph_def.node))


class OpsSummary:
    """
    Counts case outcomes per op type. Every op type present in a case's
    graph is credited with that case's outcome.
    """

    def __init__(self, device_name=None):
        self.device_name = device_name
        self.ops: Dict[str, collections.Counter] = collections.defaultdict(collections.Counter)
        self.totals = collections.Counter()

    def set_device_name(self, device_name):
        self.device_name = device_name

    def update(self, op_counts, outcome):
        status = getattr(outcome, "value", outcome)
        for op_type in op_counts:
            self.ops[op_type][status] += 1
        self.totals[status] += 1

    def to_dict(self):
        return {
            "device": self.device_name,
            "totals": dict(self.totals),
            "ops": {op_type: dict(counts) for op_type, counts in sorted(self.ops.items())},
        }

    def save(self, path):
        output_dir = os.path.dirname(path)
        if output_dir and not os.path.exists(output_dir):
            os.makedirs(output_dir, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2, sort_keys=True)
        logging.info(f"Op statistics saved to {path}")

    def log_summary(self):
        logging.info("=" * 60)
        logging.info(f"Op statistics ({self.device_name or 'all devices'})")
        for op_type, counts in sorted(self.ops.items()):
            details = ", ".join(f"{status}={count}" for status, count in sorted(counts.items()))
            logging.info(f"  {op_type:<24} {details}")
        totals = ", ".join(f"{status}={count}" for status, count in sorted(self.totals.items()))
        logging.info(f"Cases: {sum(self.totals.values())} ({totals})")
        logging.info("=" * 60)
