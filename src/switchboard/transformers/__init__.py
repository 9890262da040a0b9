"""Provider transformers and the pipeline that applies them.

Re-exports the public interface so callers can write::

    from switchboard.transformers import TransformerPipeline, TransformerRegistry
"""

from switchboard.transformers.base import Capability, Transformer, TransformerContext
from switchboard.transformers.pipeline import TransformerPipeline
from switchboard.transformers.reasoning import ReasoningContentTransformer
from switchboard.transformers.registry import TransformerRegistry
from switchboard.transformers.request import CleanCacheTransformer, MaxTokenTransformer

__all__ = [
    "Capability",
    "CleanCacheTransformer",
    "MaxTokenTransformer",
    "ReasoningContentTransformer",
    "Transformer",
    "TransformerContext",
    "TransformerPipeline",
    "TransformerRegistry",
]
