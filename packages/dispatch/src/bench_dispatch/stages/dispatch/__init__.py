from .process import BenchRunner, SubprocessBenchRunner, kill_process_tree
from .runner import artifact_dir_of, run_benchmarks
from .stage import DispatchStage

__all__ = [
    "BenchRunner",
    "DispatchStage",
    "SubprocessBenchRunner",
    "artifact_dir_of",
    "kill_process_tree",
    "run_benchmarks",
]
