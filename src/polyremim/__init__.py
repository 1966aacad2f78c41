"""polyremim: random-effect multiple interval mapping of QTL in polyploids.

Maps multiple QTL in polyploid full-sib populations with the REMIM search
(forward search, backward elimination and position refinement) driven by
variance-component score statistics over a genome-wide grid of positions.

Example:
    >>> from polyremim import QTLData, Genome, remim
    >>> data = QTLData(ploidy=4, pheno=pheno, G=G, genome=Genome([lg1, lg2]))
    >>> model = remim(data, w_size=15, sig_fwd=0.01, sig_bwd=1e-4)
    >>> model.results["T1"].qtls.to_records()
"""

import sys
from importlib.metadata import version

from loguru import logger

__version__ = version("polyremim")

# Configure loguru with sensible defaults on import
# Uses stdout so output is visible in notebook cells (stderr may be buffered)
# Users can override by calling logger.remove()/add() or setup_logging()
logger.remove()
logger.add(
    sys.stdout,
    level="INFO",
    format="{time:HH:mm:ss} | <level>{level: <8}</level> | {message}",
    colorize=True,
)

from polyremim.data import Genome, QTLData  # noqa: E402
from polyremim.remim import remim  # noqa: E402
from polyremim.search import RemimModel, ScoreNull, TraitResult  # noqa: E402

__all__ = [
    "Genome",
    "QTLData",
    "RemimModel",
    "ScoreNull",
    "TraitResult",
    "remim",
    "__version__",
]
