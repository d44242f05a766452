"""Error taxonomy for energy recording.

Every error raised by the recorder derives from :class:`EnergyRecordError`.
All of them are fatal: the recorder never retries, it routes the error through
:func:`record_job_energy.profiling.vendor.cancel.cancel_job`, which asks the
scheduler to abort the whole job and raises :class:`JobCancelledError`.

Classes
-------
EnergyRecordError
    Base class.
NotInJobError
    No supported launcher identity was found in the environment.
ScanError
    The powercap topology root is missing or not a directory.
SampleError
    A zone counter could not be read.
CounterResetError
    A zone counter went backwards between the start and finish samples.
DirectoryError
    An output directory could not be created.
TaskFailureError
    The wrapped task exited unsuccessfully (or no task was given).
BarrierTimeoutError
    Peer processes did not all report before the timeout.
JobCancelledError
    Raised by the cancellation controller after requesting a job abort.
"""

from __future__ import annotations


class EnergyRecordError(RuntimeError):
    """Base class for all record-job-energy failures."""


class NotInJobError(EnergyRecordError):
    """Raised when the process was not started by a supported parallel launcher."""


class ScanError(EnergyRecordError):
    """Raised when the zone topology root cannot be scanned."""


class SampleError(EnergyRecordError):
    """Raised when a zone energy counter cannot be read or interpreted."""


class CounterResetError(SampleError):
    """Raised when a finishing counter value is lower than its starting value."""


class DirectoryError(EnergyRecordError):
    """Raised when an output directory cannot be created."""


class TaskFailureError(EnergyRecordError):
    """Raised when the wrapped task fails."""


class BarrierTimeoutError(EnergyRecordError):
    """Raised when rank 0 gives up waiting for its peers."""


class JobCancelledError(EnergyRecordError):
    """Fatal error raised once a job abort has been requested."""
