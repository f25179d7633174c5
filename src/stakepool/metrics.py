"""
stakepool/metrics.py

Prometheus metrics collection for stakepool.

Exposes pool state (total staked, rewards distributed, active positions,
vault balances) as gauges and engine operation outcomes as counters.
"""

import time
import logging
import threading
from collections import defaultdict
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from .errors import ErrorCode

if TYPE_CHECKING:
    from .protocol.engine import StakingEngine

logger = logging.getLogger("stakepool.metrics")

VERSION = "1.0.0"


def _escape_label(value: Any) -> str:
    """Escape a label value for the Prometheus text exposition format."""
    return str(value).replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


class MetricsCollector:
    """
    Prometheus metrics collector for a StakingEngine.

    Registers itself as an operation listener on the engine, so counters are
    updated as operations happen; pool gauges are read at collection time.

    Usage:
        engine = StakingEngine(ledger)
        metrics = MetricsCollector(engine)

        prometheus_output = metrics.collect()
    """

    # Metric definitions
    METRICS = {
        "stakepool_pools_total": {
            "type": "gauge",
            "help": "Number of initialized pools",
        },
        "stakepool_total_staked": {
            "type": "gauge",
            "help": "Stake currently held by active positions",
        },
        "stakepool_rewards_distributed": {
            "type": "counter",
            "help": "Cumulative reward paid out",
        },
        "stakepool_reward_rate": {
            "type": "gauge",
            "help": "Pool reward rate (units per second, scaled by 1e9)",
        },
        "stakepool_active_positions": {
            "type": "gauge",
            "help": "Number of active positions",
        },
        "stakepool_reward_vault_balance": {
            "type": "gauge",
            "help": "Reward vault balance",
        },
        "stakepool_operations_total": {
            "type": "counter",
            "help": "Engine operations by outcome",
        },
        "stakepool_errors_total": {
            "type": "counter",
            "help": "Rejected engine operations by error code",
        },
        "stakepool_uptime_seconds": {
            "type": "counter",
            "help": "Collector uptime in seconds",
        },
        "stakepool_info": {
            "type": "gauge",
            "help": "Node information (version as label)",
        },
    }

    def __init__(self, engine: "StakingEngine"):
        """
        Initialize metrics collector.

        Args:
            engine: StakingEngine to collect metrics from
        """
        self.engine = engine
        self._start_time = time.time()
        self._lock = threading.Lock()

        # Counters (persist across collections)
        self._operations: Dict[Tuple[str, str], int] = defaultdict(int)
        self._errors: Dict[str, int] = defaultdict(int)

        engine.add_operation_listener(self.record_operation)

    def record_operation(
        self,
        operation: str,
        success: bool,
        error_code: Optional[ErrorCode] = None,
    ) -> None:
        """Record the outcome of one engine operation."""
        status = "success" if success else "rejected"
        with self._lock:
            self._operations[(operation, status)] += 1
            if error_code is not None:
                self._errors[error_code.value] += 1

    def collect(self) -> str:
        """
        Collect all metrics and return in Prometheus format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines: List[str] = []

        def header(name: str) -> None:
            metric_def = self.METRICS.get(name, {})
            lines.append(f"# HELP {name} {metric_def.get('help', '')}")
            lines.append(f"# TYPE {name} {metric_def.get('type', 'gauge')}")

        def sample(name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
            if labels:
                label_str = ",".join(f'{k}="{_escape_label(v)}"' for k, v in labels.items())
                lines.append(f"{name}{{{label_str}}} {value}")
            else:
                lines.append(f"{name} {value}")

        try:
            pools = self.engine.list_pools()

            header("stakepool_pools_total")
            sample("stakepool_pools_total", len(pools))

            per_pool = [
                ("stakepool_total_staked", lambda p: p.total_staked),
                ("stakepool_rewards_distributed", lambda p: p.rewards_distributed),
                ("stakepool_reward_rate", lambda p: p.reward_rate),
                ("stakepool_active_positions",
                 lambda p: len(self.engine.active_positions(p.stake_asset_id))),
                ("stakepool_reward_vault_balance",
                 lambda p: self.engine.reward_vault_balance(p.stake_asset_id)),
            ]
            for name, value_of in per_pool:
                header(name)
                for pool in pools:
                    sample(name, value_of(pool), {"pool": pool.stake_asset_id})

            with self._lock:
                operations = dict(self._operations)
                errors = dict(self._errors)

            header("stakepool_operations_total")
            for (operation, status), count in sorted(operations.items()):
                sample(
                    "stakepool_operations_total",
                    count,
                    {"operation": operation, "status": status},
                )

            header("stakepool_errors_total")
            for code, count in sorted(errors.items()):
                sample("stakepool_errors_total", count, {"code": code})

            header("stakepool_uptime_seconds")
            sample("stakepool_uptime_seconds", time.time() - self._start_time)

            header("stakepool_info")
            sample("stakepool_info", 1, {"version": VERSION})

        except Exception as e:
            logger.error(f"Error collecting metrics: {e}")
            lines.append(f"# Error collecting metrics: {e}")

        return "\n".join(lines) + "\n"

    def get_stats(self) -> Dict[str, Any]:
        """
        Get metrics as a dictionary (for JSON API).

        Returns:
            Dictionary of metric values
        """
        try:
            pools = self.engine.list_pools()
            with self._lock:
                operations = {
                    f"{op}:{status}": count
                    for (op, status), count in self._operations.items()
                }
                errors = dict(self._errors)
            return {
                "pools": len(pools),
                "total_staked": {p.stake_asset_id: p.total_staked for p in pools},
                "rewards_distributed": {
                    p.stake_asset_id: p.rewards_distributed for p in pools
                },
                "operations": operations,
                "errors": errors,
                "uptime_seconds": time.time() - self._start_time,
            }
        except Exception as e:
            logger.error(f"Error getting stats: {e}")
            return {"error": str(e)}

    def reset_counters(self) -> None:
        """Reset all counters (useful for testing)."""
        with self._lock:
            self._operations.clear()
            self._errors.clear()
