"""
When and how to (re)build the approximate FAISS index.

The index is an optimization only: it is built once the corpus is large
enough to train the coarse quantizer and is rebuilt in large increments so
that construction cost is amortized over steady ingestion.
"""

import math
from dataclasses import dataclass

MIN_RECORDS = 512
UPDATE_INTERVAL = 5000
SUB_VECTORS = 16
MAX_PARTITIONS = 512
SAMPLE_RATE_MAX = 1024

# k-means for PQ codebooks (256 centroids per sub-quantizer) wants ~39 points per centroid
PQ_MIN_TRAINING_POINTS = 39 * 256

# Candidates fetched from the index per requested result before exact re-ranking
RERANK_FACTOR = 4


@dataclass
class IndexPolicy:
    """Thresholds controlling index construction."""

    min_records: int = MIN_RECORDS
    update_interval: int = UPDATE_INTERVAL
    max_partitions: int = MAX_PARTITIONS
    sub_vectors: int = SUB_VECTORS

    def should_build(self, count: int, last_index_count: int) -> bool:
        """Build the first index at min_records, then rebuild every update_interval rows."""
        if count < self.min_records:
            return False
        return last_index_count == 0 or count - last_index_count >= self.update_interval

    def num_partitions(self, count: int) -> int:
        """Number of IVF partitions for a corpus of `count` vectors, never above `count`."""
        if count < 10000:
            partitions = min(256, max(64, int(math.sqrt(count))))
        elif count < 100000:
            partitions = 256
        else:
            partitions = self.max_partitions

        # k-means cannot produce more clusters than points
        return max(1, min(partitions, count))

    def training_size(self, count: int, partitions: int) -> int:
        """Number of vectors sampled to train the index."""
        sample_rate = max(partitions, min(SAMPLE_RATE_MAX, count))
        return min(count, partitions * sample_rate)

    def use_product_quantization(self, dimension: int, training_size: int) -> bool:
        return dimension % self.sub_vectors == 0 and training_size >= PQ_MIN_TRAINING_POINTS

    def factory_string(self, dimension: int, count: int) -> str:
        """FAISS index_factory description for the current corpus."""
        partitions = self.num_partitions(count)
        training = self.training_size(count, partitions)
        if self.use_product_quantization(dimension, training):
            return f"IVF{partitions},PQ{self.sub_vectors}"
        return f"IVF{partitions},Flat"

    def nprobe(self, partitions: int) -> int:
        """Partitions visited per query."""
        return min(partitions, max(8, partitions // 4))
