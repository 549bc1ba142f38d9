import logging
import sys
import os
import json
import time
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

import psutil


def configure_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
    )


# --- Errors ---


class PipelineError(Exception):
    """Fatal error raised by a pipeline stage. The message names the stage."""

    stage = "pipeline"

    def __init__(self, message: str, stage: Optional[str] = None):
        if stage is not None:
            self.stage = stage
        self.condition = message
        super().__init__(f"[{self.stage}] {message}")


class TraceLoadError(PipelineError):
    stage = "load"


class EmptyResultError(PipelineError):
    pass


class ZeroContainmentError(EmptyResultError):
    stage = "containment"


class CRSMismatchError(PipelineError):
    stage = "containment"


class DistrictDataError(PipelineError):
    stage = "districts"


# --- Configuration ---


@dataclass(frozen=True)
class PipelineConfig:
    """Run parameters of the trace report."""

    max_speed_kph: float = 200.0
    day_of_month: int = 3
    reproject: bool = True
    district_name_col: str = "name"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# --- Run metadata ---


class StepMetadataLogger:
    def __init__(self, output_dir: str, filename: str = "step_metadata.json"):
        self.output_dir = output_dir
        self.metadata: Dict[str, Any] = {}
        self.filepath = os.path.join(output_dir, filename)

    def add_stat(self, key: str, value: Any):
        self.metadata[key] = value

    def add_stats(self, stats: Dict[str, Any]):
        self.metadata.update(stats)

    def record_filtering(self, step: str, before: int, after: int, criteria: str):
        pct = 100.0 * (before - after) / before if before > 0 else 0.0
        self.metadata.setdefault("filtering", {})[step] = {
            "before": before,
            "after": after,
            "filtered": before - after,
            "filtered_pct": pct,
            "criteria": criteria,
        }

    def log_stats(self, level=logging.INFO):
        for key, value in self.metadata.items():
            logging.log(level, f"[METADATA] {key}: {value}")

    def save(self):
        os.makedirs(self.output_dir, exist_ok=True)
        with open(self.filepath, "w") as f:
            json.dump(self.metadata, f, indent=2, default=str)
        logging.info(f"Step metadata saved to {self.filepath}")

    def get(self, key: str, default=None):
        return self.metadata.get(key, default)


def profile_step(step_name):
    def decorator(func):
        def wrapper(*args, **kwargs):
            process = psutil.Process(os.getpid())
            mem_before = process.memory_info().rss / 1024**2  # MB
            t0 = time.perf_counter()
            result = func(*args, **kwargs)
            t1 = time.perf_counter()
            mem_after = process.memory_info().rss / 1024**2  # MB
            elapsed = t1 - t0
            logging.info(f"[PROFILE] {step_name}: time={elapsed:.2f}s, mem_before={mem_before:.2f}MB, mem_after={mem_after:.2f}MB, delta={mem_after-mem_before:.2f}MB")
            return result
        wrapper.__name__ = func.__name__
        wrapper.__doc__ = func.__doc__
        return wrapper
    return decorator
