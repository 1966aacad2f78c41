"""Input data structures for the REMIM search."""

from polyremim.data.dataset import KinshipTensor, QTLData, Trait
from polyremim.data.genome import Genome

__all__ = ["Genome", "KinshipTensor", "QTLData", "Trait"]
