"""Job kind adapters, one per supported training framework."""

from training_operator.kinds.base import JobKindAdapter
from training_operator.kinds.mpi import MPIJobAdapter
from training_operator.kinds.mxnet import MXJobAdapter
from training_operator.kinds.pytorch import PyTorchJobAdapter
from training_operator.kinds.tensorflow import TFJobAdapter
from training_operator.kinds.xgboost import XGBoostJobAdapter

# Compiled-in job kinds, keyed by lower-case scheme name
SUPPORTED_SCHEMES: dict[str, type[JobKindAdapter]] = {
    adapter.kind.lower(): adapter
    for adapter in (
        TFJobAdapter,
        PyTorchJobAdapter,
        MXJobAdapter,
        XGBoostJobAdapter,
        MPIJobAdapter,
    )
}

__all__ = [
    "JobKindAdapter",
    "MPIJobAdapter",
    "MXJobAdapter",
    "PyTorchJobAdapter",
    "SUPPORTED_SCHEMES",
    "TFJobAdapter",
    "XGBoostJobAdapter",
]
