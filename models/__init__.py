"""Models package - factor model engines and the fitted model artifact."""

from .base import BaseFactorModel
from .factory import ModelFactory, create_model
from .likelihoods import get_likelihood
from .svi_gfa import NumpyroGFA
from .trained import TrainedFactorModel
from .variational_gfa import VariationalGFA

__all__ = [
    'ModelFactory',
    'create_model',
    'BaseFactorModel',
    'NumpyroGFA',
    'TrainedFactorModel',
    'VariationalGFA',
    'get_likelihood',
]
