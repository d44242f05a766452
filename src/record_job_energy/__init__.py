"""Per-node energy accounting for parallel Slurm/MPI job steps.

Each rank samples the node's powercap energy counters around the wrapped task
and publishes a record in a shared step directory; rank 0 waits for all ranks
and writes a proportionally attributed per-node report.
"""

__version__ = "0.1.0"
