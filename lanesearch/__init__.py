"""lanesearch - federated incremental search across content sources.

One query fans out to several independently paginated sources; results are
deduplicated against a per-query cache and revealed in small batches per
source lane.
"""

__version__ = "0.1.0"
__author__ = "lanesearch contributors"

from lanesearch.core.orchestrator import SearchOrchestrator
from lanesearch.core.data_models import ResultItem

__all__ = ["SearchOrchestrator", "ResultItem", "__version__"]
