"""In-memory HNSW (hierarchical navigable small world) vector index.

Vectors are L2-normalized on insertion so cosine similarity is a dot product.
Each node gets a random top layer ``floor(-ln(U) / ln(m))``; upper layers are
sparse express lanes, layer 0 holds every node. Insertion descends greedily to
the node's top layer, then on every layer at or below it runs a beam search of
width ``ef_construction``, picks neighbours with the HNSW heuristic and links
both ways, shrinking neighbour lists that overflow.

Concurrency: insertions are serialized by a lock. Searches take no lock.
A node's vector, entry and (empty) link lists are appended before any other
node links to it, and link lists are immutable tuples replaced as a whole, so
a search running alongside an insertion never sees a half-built node.
"""

import heapq
import math
import random
import threading
from typing import Dict, Hashable, Iterable, List, Optional, Set, Tuple

import numpy as np

from ragengine.embeddings.base import as_vector
from ragengine.exceptions import DimensionMismatchError
from ragengine.models import IndexEntry, SearchHit
from ragengine.utils.config import DuplicatePolicy
from ragengine.utils.logger import get_logger

logger = get_logger("index")

Scored = Tuple[float, int]  # (similarity, node id)


class HNSWIndex:
    """Approximate k-nearest-neighbour index over cosine similarity."""

    def __init__(
        self,
        dimension: Optional[int] = None,
        m: int = 16,
        ef_construction: int = 200,
        ef_search: int = 64,
        seed: int = 42,
        duplicate_policy: DuplicatePolicy = DuplicatePolicy.SOURCE
    ):
        """
        Initialize an empty index.

        Args:
            dimension: Vector dimension; None takes it from the first insertion
            m: Links per node on upper layers (layer 0 allows 2 * m)
            ef_construction: Beam width used while inserting
            ef_search: Default beam width used while searching
            seed: Seed for level sampling
            duplicate_policy: How entries with already-indexed content are handled
        """
        if dimension is not None and dimension <= 0:
            raise ValueError("dimension must be positive")
        if m < 2:
            raise ValueError("m must be at least 2")
        if ef_construction <= 0 or ef_search <= 0:
            raise ValueError("ef_construction and ef_search must be positive")

        self.m = m
        self.m0 = 2 * m
        self.ef_construction = max(ef_construction, m)
        self.ef_search = ef_search
        self.duplicate_policy = DuplicatePolicy(duplicate_policy)

        self._dimension = dimension
        self._level_mult = 1.0 / math.log(m)
        self._rng = random.Random(seed)

        self._vectors: List[np.ndarray] = []
        self._entries: List[IndexEntry] = []
        self._links: List[List[Tuple[int, ...]]] = []
        self._entry_point: Optional[Tuple[int, int]] = None  # (node, top layer)
        self._size = 0
        self._dedup_keys: Set[Hashable] = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return self._size

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    @property
    def max_level(self) -> int:
        entry_point = self._entry_point
        return -1 if entry_point is None else entry_point[1]

    def entries(self) -> List[IndexEntry]:
        """Snapshot of indexed entries in insertion order."""
        return self._entries[:self._size]

    def sources(self) -> Set[str]:
        """Distinct source identifiers present in the index."""
        return {entry.source for entry in self.entries()}

    def insert(self, entry: IndexEntry) -> bool:
        """
        Add one entry to the graph.

        Returns:
            False if the duplicate policy skipped the entry, True otherwise

        Raises:
            DimensionMismatchError: Vector dimension differs from the index dimension
            ValueError: Vector has zero norm
        """
        return self.insert_many([entry]) == 1

    def insert_many(self, entries: Iterable[IndexEntry]) -> int:
        """
        Add several entries; every vector is validated before any is inserted.

        Returns:
            Number of entries actually inserted
        """
        entries = list(entries)
        if not entries:
            return 0

        with self._lock:
            dimension = self._dimension or as_vector(entries[0].vector).shape[0]
            prepared = [self._normalize(entry.vector, dimension, "Index entry") for entry in entries]

            self._dimension = dimension
            inserted = 0
            for entry, vector in zip(entries, prepared):
                key = self._dedup_key(entry)
                if key is not None:
                    if key in self._dedup_keys:
                        logger.debug(f"Skipping duplicate entry {entry.chunk_id}")
                        continue
                    self._dedup_keys.add(key)
                self._insert_locked(entry, vector)
                inserted += 1

        logger.debug(f"Indexed {inserted}/{len(entries)} entries ({self._size} total)")
        return inserted

    def search(
        self,
        query_vector,
        k: int,
        ef: Optional[int] = None
    ) -> List[SearchHit]:
        """
        Find the k entries most similar to ``query_vector``.

        Args:
            query_vector: Query embedding
            k: Maximum number of results
            ef: Beam width (defaults to ef_search, never below k)

        Returns:
            Hits ordered by descending similarity, ties by insertion order.
            Fewer than k hits only when the index holds fewer than k entries.
        """
        if k <= 0:
            return []

        entry_point = self._entry_point
        size = self._size
        dimension = self._dimension
        if entry_point is None or dimension is None:
            return []

        query = self._normalize(query_vector, dimension, "Query vector")
        ef = max(ef or self.ef_search, k)

        current, top_layer = entry_point
        current_sim = self._similarity(query, current)
        for layer in range(top_layer, 0, -1):
            current, current_sim = self._greedy_closest(query, current, current_sim, layer)

        found = self._search_layer(query, [(current_sim, current)], ef, 0)
        ranked = sorted(found, key=lambda item: (-item[0], item[1]))

        if len(ranked) < min(k, size):
            # The beam did not reach enough nodes; rank everything exactly
            ranked = self._exact_ranking(query, size)

        return [SearchHit(self._entries[node], sim) for sim, node in ranked[:k]]

    def _dedup_key(self, entry: IndexEntry) -> Optional[Hashable]:
        if self.duplicate_policy == DuplicatePolicy.SOURCE:
            return entry.source, entry.content_hash
        if self.duplicate_policy == DuplicatePolicy.CONTENT:
            return entry.content_hash
        return None

    @staticmethod
    def _normalize(values, dimension: int, context: str) -> np.ndarray:
        vector = as_vector(values)
        if vector.shape[0] != dimension:
            raise DimensionMismatchError(dimension, vector.shape[0], context)
        norm = float(np.linalg.norm(vector))
        if norm == 0.0 or not math.isfinite(norm):
            raise ValueError(f"{context} must have a finite, non-zero norm")
        normalized = vector / norm
        normalized.setflags(write=False)
        return normalized

    def _similarity(self, query: np.ndarray, node: int) -> float:
        return float(np.dot(self._vectors[node], query))

    def _random_level(self) -> int:
        # 1 - random() lies in (0, 1], so the log is finite
        return int(-math.log(1.0 - self._rng.random()) * self._level_mult)

    def _insert_locked(self, entry: IndexEntry, vector: np.ndarray):
        node = len(self._vectors)
        level = self._random_level()

        self._vectors.append(vector)
        self._entries.append(entry)
        self._links.append([() for _ in range(level + 1)])

        if self._entry_point is None:
            self._entry_point = (node, level)
            self._size += 1
            return

        entry_node, top_layer = self._entry_point
        current_sim = self._similarity(vector, entry_node)
        current = entry_node

        for layer in range(top_layer, level, -1):
            current, current_sim = self._greedy_closest(vector, current, current_sim, layer)

        entry_points = [(current_sim, current)]
        for layer in range(min(level, top_layer), -1, -1):
            found = self._search_layer(vector, entry_points, self.ef_construction, layer)
            neighbours = self._select_neighbours(found, self.m)
            self._links[node][layer] = tuple(neighbours)

            max_links = self.m0 if layer == 0 else self.m
            for neighbour in neighbours:
                self._connect(neighbour, node, layer, max_links)

            entry_points = found

        if level > top_layer:
            self._entry_point = (node, level)

        self._size += 1

    def _connect(self, node: int, new_neighbour: int, layer: int, max_links: int):
        """Add a back-link, pruning with the neighbour heuristic when full."""
        current = self._links[node][layer]
        if len(current) < max_links:
            self._links[node][layer] = current + (new_neighbour,)
            return

        base = self._vectors[node]
        candidates = [
            (self._similarity(base, other), other)
            for other in current + (new_neighbour,)
        ]
        self._links[node][layer] = tuple(self._select_neighbours(candidates, max_links))

    def _select_neighbours(self, candidates: List[Scored], limit: int) -> List[int]:
        """
        HNSW neighbour-selection heuristic.

        A candidate is kept if it is closer to the base point than to every
        neighbour already kept, which spreads links across directions. Pruned
        candidates fill any remaining slots.
        """
        ordered = sorted(candidates, key=lambda item: (-item[0], item[1]))
        selected: List[Scored] = []
        pruned: List[Scored] = []

        for sim, node in ordered:
            if len(selected) >= limit:
                break
            vector = self._vectors[node]
            if all(sim > float(np.dot(vector, self._vectors[kept])) for _, kept in selected):
                selected.append((sim, node))
            else:
                pruned.append((sim, node))

        for item in pruned:
            if len(selected) >= limit:
                break
            selected.append(item)

        return [node for _, node in selected]

    def _greedy_closest(
        self,
        query: np.ndarray,
        current: int,
        current_sim: float,
        layer: int
    ) -> Tuple[int, float]:
        changed = True
        while changed:
            changed = False
            for neighbour in self._links[current][layer]:
                sim = self._similarity(query, neighbour)
                if sim > current_sim:
                    current, current_sim, changed = neighbour, sim, True
        return current, current_sim

    def _search_layer(
        self,
        query: np.ndarray,
        entry_points: List[Scored],
        ef: int,
        layer: int
    ) -> List[Scored]:
        """Beam search on one layer; returns up to ef (similarity, node) pairs."""
        visited = {node for _, node in entry_points}
        candidates = [(-sim, node) for sim, node in entry_points]
        heapq.heapify(candidates)
        # Min-heap keyed so the worst result (lowest similarity, latest node) pops first
        results = [(sim, -node) for sim, node in entry_points]
        heapq.heapify(results)
        while len(results) > ef:
            heapq.heappop(results)

        while candidates:
            neg_sim, node = heapq.heappop(candidates)
            if len(results) >= ef and -neg_sim < results[0][0]:
                break

            for neighbour in self._links[node][layer]:
                if neighbour in visited:
                    continue
                visited.add(neighbour)

                sim = self._similarity(query, neighbour)
                # Ties with the worst result are still explored; the heap
                # then drops whichever of them was inserted last
                if len(results) < ef or sim >= results[0][0]:
                    heapq.heappush(candidates, (-sim, neighbour))
                    heapq.heappush(results, (sim, -neighbour))
                    if len(results) > ef:
                        heapq.heappop(results)

        return [(sim, -neg_node) for sim, neg_node in results]

    def _exact_ranking(self, query: np.ndarray, size: int) -> List[Scored]:
        if size == 0:
            return []
        matrix = np.stack(self._vectors[:size])
        sims = matrix @ query
        order = np.lexsort((np.arange(size), -sims))
        return [(float(sims[i]), int(i)) for i in order]

    def stats(self) -> Dict[str, int]:
        """Index size and graph shape."""
        return {
            "entries": self._size,
            "dimension": self._dimension or 0,
            "max_level": self.max_level,
        }
